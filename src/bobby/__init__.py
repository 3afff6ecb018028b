"""Bobby: a Discord bot that answers code questions with Claude Code."""
