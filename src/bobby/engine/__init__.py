"""Claude CLI engine: subprocess invocation and the NDJSON stream protocol."""
