#!/usr/bin/env python3
"""claude-sessions - Search, browse, and resume Claude Code sessions

Runs the CLI from a source checkout without installing it:

    ./run.py search vault
"""
import sys

from claude_sessions.cli import main

if __name__ == "__main__":
    sys.exit(main(prog_name="claude-sessions"))
