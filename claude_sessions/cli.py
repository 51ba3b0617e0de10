"""
claude-sessions command line

Commands:
    claude-sessions              List all indexed sessions (with real titles)
    claude-sessions search TERM  Search by keyword in titles, summaries, prompts
    claude-sessions grep TERM    Search in file contents (slower, covers all files on disk)
    claude-sessions info ID      Show session metadata and real title
    claude-sessions read ID      Read conversation messages (paged)
    claude-sessions resume ID    Resume session in Claude CLI terminal

ID = first 8 characters of the session UUID.
"""

from __future__ import annotations

import logging
import os
import sys

import click

from . import __version__
from .core import (
    GrepHit,
    ProjectLocation,
    SearchHit,
    SessionInfo,
    SessionsError,
    Settings,
    Turn,
    describe_session,
    grep_sessions,
    load_index,
    read_transcript,
    require_project,
    resolve_session,
    resume_session,
    search_sessions,
    try_load_index,
)

logger = logging.getLogger("claude_sessions")

TITLE_WIDTH = 38
SUMMARY_WIDTH = 35
INFO_WIDTH = 80

HELP_TEXT = """\
claude-sessions - Search, browse, and resume Claude Code sessions

Commands:
  claude-sessions              List all indexed sessions (with real titles)
  claude-sessions search TERM  Search by keyword in titles, summaries, prompts
  claude-sessions grep TERM    Search in file contents (slower, covers all files on disk)
  claude-sessions info ID      Show session metadata and real title
  claude-sessions read ID      Read conversation messages (paged)
  claude-sessions resume ID    Resume session in Claude CLI terminal

ID = first 8 characters of the session UUID (shown in list/search output).

After 'resume', the session will appear in the VS Code "Past Conversations" dropdown.

Tip: create an alias for convenience:
  alias cs='claude-sessions'
"""


# ═══════════════════════════════════════════════════════════════════════════════
# Formatting
# ═══════════════════════════════════════════════════════════════════════════════


def _first_line(text: str, width: int) -> str:
    return text.split("\n")[0][:width]


def format_session_table(hits: list[SearchHit]) -> list[str]:
    lines = [
        "%-12s %5s %-10s %-40s %s" % ("Date", "Msgs", "ID", "Title", "Summary"),
        "-" * 110,
    ]
    for hit in hits:
        entry = hit.entry
        title = _first_line(hit.title, TITLE_WIDTH) if hit.title else "(no title)"
        summary = (entry.summary or "")[:SUMMARY_WIDTH]
        lines.append("%-12s %5d %-10s %-40s %s" % (
            (entry.created or "")[:10],
            entry.message_count or 0,
            entry.short_id,
            title,
            summary,
        ))
    return lines


def format_grep_table(hits: list[GrepHit]) -> list[str]:
    lines = [
        "%-12s %-10s %-40s %s" % ("Date", "ID", "Title", "Summary"),
        "-" * 100,
    ]
    for hit in hits:
        date_str = hit.created[:10] if hit.created else "(no date)"
        title = _first_line(hit.title, TITLE_WIDTH) if hit.title else "(no title)"
        lines.append("%-12s %-10s %-40s %s" % (
            date_str, hit.short_id, title, hit.summary[:SUMMARY_WIDTH],
        ))
    return lines


def format_info(info: SessionInfo) -> list[str]:
    lines = [
        f"Session:  {info.session_id}",
        f"File:     {info.path}",
        f"Size:     {info.size_bytes / 1024:.0f} KB",
        f"Mtime:    {info.mtime.strftime('%Y-%m-%d %H:%M')}",
        "",
    ]

    if info.title:
        title_lines = info.title.split("\n")[:3]
        lines.append(f"Title:    {title_lines[0][:INFO_WIDTH]}")
        for line in title_lines[1:]:
            lines.append(f"          {line[:INFO_WIDTH]}")

    entry = info.entry
    if entry:
        message_count = entry.message_count if entry.message_count is not None else "?"
        lines.extend([
            f"Created:  {entry.created or ''}",
            f"Modified: {entry.modified or ''}",
            f"Messages: {message_count}",
            f"Summary:  {entry.summary or '(none)'}",
            f"Branch:   {entry.git_branch or '(none)'}",
        ])
    else:
        lines.append("(not in sessions-index.json - file exists on disk only)")

    short_id = info.session_id[:8]
    lines.extend([
        "",
        f"To read:   claude-sessions read {short_id}",
        f"To resume: claude-sessions resume {short_id}",
    ])
    return lines


def format_transcript(turns: list[Turn]) -> str:
    chunks: list[str] = []
    for turn in turns:
        if turn.role == "user":
            rule = "=" * 70
            label = f"  USER (msg {turn.number})"
        else:
            rule = "-" * 70
            label = f"  CLAUDE (msg {turn.number})"
        chunks.append(f"\n{rule}\n{label}\n{rule}\n{turn.text}\n")
    return "".join(chunks)


# ═══════════════════════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════════════════════


class SessionsGroup(click.Group):
    """Command group that reports SessionsError as a message plus exit code."""

    def format_help(self, ctx, formatter):
        formatter.write(HELP_TEXT)

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except SessionsError as e:
            logger.debug(f"{e.code}: {e.message}")
            click.echo(e.message, err=True)
            ctx.exit(e.exit_code)


class AppContext:
    def __init__(self, settings: Settings, start_dir: str):
        self.settings = settings
        self.start_dir = start_dir

    def project(self) -> ProjectLocation:
        return require_project(self.start_dir, self.settings.get_projects_dir())


pass_app = click.make_pass_decorator(AppContext)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@click.group(cls=SessionsGroup, invoke_without_command=True,
             context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--project", "-C", "start_dir", default=None, metavar="DIR",
              help="Resolve the project from DIR instead of the current directory.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr.")
@click.version_option(__version__, "--version", prog_name="claude-sessions",
                      message="%(prog)s %(version)s")
@click.pass_context
def main(ctx, start_dir, verbose):
    """Search, browse, and resume Claude Code sessions."""
    settings = Settings.from_env()
    _configure_logging(verbose or settings.debug)
    ctx.obj = AppContext(settings, start_dir or os.getcwd())

    if ctx.invoked_subcommand is None:
        ctx.invoke(list_cmd)


@main.command("list")
@pass_app
def list_cmd(app):
    """List all indexed sessions, newest first."""
    _print_search(app, "")


@main.command("search")
@click.argument("term", required=False, default="")
@pass_app
def search_cmd(app, term):
    """Search titles, summaries and index metadata for TERM."""
    _print_search(app, term)


def _print_search(app: AppContext, term: str) -> None:
    index = load_index(app.project())
    total = len(index.newest_first())
    hits = search_sessions(index, term)

    if term:
        click.echo(f"Search: '{term}' - {len(hits)} results (of {total} indexed)")
    else:
        click.echo(f"Sessions: {total} indexed")
    click.echo()
    for line in format_session_table(hits):
        click.echo(line)

    if not hits and term:
        click.echo(f"(no results - try 'claude-sessions grep {term}' to search all files on disk)")


@main.command("grep")
@click.argument("term")
@pass_app
def grep_cmd(app, term):
    """Search the contents of every session file on disk for TERM."""
    location = app.project()
    hits = grep_sessions(location, term, try_load_index(location))
    if not hits:
        click.echo(f"No sessions contain '{term}'")
        return

    click.echo(f"Grep: '{term}' - {len(hits)} sessions match")
    click.echo()
    for line in format_grep_table(hits):
        click.echo(line)


@main.command("info")
@click.argument("session_id", metavar="ID")
@pass_app
def info_cmd(app, session_id):
    """Show session metadata and real title."""
    info = describe_session(app.project(), session_id)
    for line in format_info(info):
        click.echo(line)


@main.command("read")
@click.argument("session_id", metavar="ID")
@click.option("--no-pager", is_flag=True, help="Print to stdout instead of paging.")
@pass_app
def read_cmd(app, session_id, no_pager):
    """Read conversation messages (USER/CLAUDE turns)."""
    path = resolve_session(app.project().project_dir, session_id)
    turns = read_transcript(path, max_chars=app.settings.max_turn_chars)

    text = f"Reading: {path.name}\n" + format_transcript(turns)
    if no_pager:
        click.echo(text)
    else:
        click.echo_via_pager(text)


@main.command("resume")
@click.argument("session_id", metavar="ID")
@pass_app
def resume_cmd(app, session_id):
    """Resume a session in the Claude CLI."""
    project_dir = app.project().project_dir
    full_id = resolve_session(project_dir, session_id).stem
    click.echo(f"Resuming: {full_id}")
    click.echo("(Session will appear in VS Code dropdown after this)")
    click.echo()
    code = resume_session(project_dir, full_id, app.settings)
    sys.exit(code)


@main.command("version")
def version_cmd():
    """Show the version."""
    click.echo(f"claude-sessions {__version__}")


@main.command("help")
@click.pass_context
def help_cmd(ctx):
    """Show usage."""
    click.echo(ctx.parent.get_help())


if __name__ == "__main__":
    main()
