"""claude-sessions - Search, browse, and resume Claude Code sessions."""

__version__ = "1.0.0"
