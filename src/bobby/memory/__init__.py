"""Topic-indexed Markdown memory.

Layout:
    <memory_dir>/
    ├── CLAUDE.md          # Index: one link per topic file
    └── docs/
        └── bugs.md        # One file per topic (append-only)
"""
