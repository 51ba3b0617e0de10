"""
claude-sessions core

Locates, searches and reads the Claude Code JSONL session logs stored under
~/.claude/projects/, working around the CLI's "last 10 sessions" and the
editor's ~50 session dropdown limits.

Claude Code keeps one directory per project, named after the project's
absolute path, holding a sessions-index.json plus one <uuid>.jsonl per
session. The index's firstPrompt field is overwritten after /compact, so
titles are always recomputed from the log itself.

Environment variables (prefix CLAUDE_SESSIONS_):
    CLAUDE_SESSIONS_CLAUDE_DIR      - Root Claude directory (default: ~/.claude)
    CLAUDE_SESSIONS_PROJECTS_DIR    - Projects directory (default: <claude_dir>/projects)
    CLAUDE_SESSIONS_RESUME_COMMAND  - Resume command (default: "claude --resume")
    CLAUDE_SESSIONS_MAX_TURN_CHARS  - Per-turn cap for `read` (default: 3000)
    CLAUDE_SESSIONS_DEBUG           - Enable debug logging (default: false)
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# ═══════════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════════

logger = logging.getLogger("claude_sessions")

INDEX_FILENAME = "sessions-index.json"
SIDECHAIN_PREFIX = "agent-"
RESERVED_MARKER = "<"
INTERRUPTED_PLACEHOLDER = "[Request interrupted by user]"
SHORT_ID_LEN = 8


@dataclass
class Settings:
    """Application configuration loaded from environment variables."""

    claude_dir: Path = field(default_factory=lambda: Path.home() / ".claude")
    projects_dir: Path | None = None
    resume_command: list[str] = field(default_factory=lambda: ["claude", "--resume"])
    max_turn_chars: int = 3000
    debug: bool = False

    @staticmethod
    def from_env() -> Settings:
        """Load settings from environment with CLAUDE_SESSIONS_ prefix."""
        s = Settings()
        # Claude Code's own override of ~/.claude
        if v := os.environ.get("CLAUDE_CONFIG_DIR"):
            s.claude_dir = Path(v).expanduser()
        if v := os.environ.get("CLAUDE_SESSIONS_CLAUDE_DIR"):
            s.claude_dir = Path(v).expanduser()
        if v := os.environ.get("CLAUDE_SESSIONS_PROJECTS_DIR"):
            s.projects_dir = Path(v).expanduser()
        if v := os.environ.get("CLAUDE_SESSIONS_RESUME_COMMAND"):
            s.resume_command = shlex.split(v)
        if v := os.environ.get("CLAUDE_SESSIONS_MAX_TURN_CHARS"):
            try:
                n = int(v)
            except ValueError:
                n = 0
            if n <= 0:
                raise UsageError(
                    f"CLAUDE_SESSIONS_MAX_TURN_CHARS must be a positive integer, got {v!r}"
                )
            s.max_turn_chars = n
        if v := os.environ.get("CLAUDE_SESSIONS_DEBUG"):
            s.debug = v.lower() in ("true", "1", "yes")
        return s

    def get_projects_dir(self) -> Path:
        if self.projects_dir:
            return self.projects_dir
        return self.claude_dir / "projects"


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class SessionsError(Exception):
    """User-facing failure. The CLI prints `message` and exits with `exit_code`."""

    code = "error"
    exit_code = 1

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ContextMissingError(SessionsError):
    code = "context_missing"


class IndexUnreadableError(SessionsError):
    code = "index_unreadable"


class SessionNotFoundError(SessionsError):
    code = "not_found"


class AmbiguousSessionError(SessionsError):
    code = "ambiguous"

    def __init__(self, prefix: str, candidates: list[str]):
        self.prefix = prefix
        self.candidates = candidates
        listing = "\n".join(f"  {c}" for c in candidates)
        super().__init__(
            f"Session ID '{prefix}' is ambiguous, it matches {len(candidates)} sessions:\n"
            f"{listing}\nUse a longer prefix."
        )


class SessionReadError(SessionsError):
    code = "unreadable"


class ResumeCommandError(SessionsError):
    code = "resume_failed"


class UsageError(SessionsError):
    code = "usage"
    exit_code = 2


# ═══════════════════════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════════════════════


class TextBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class RecordKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SUMMARY = "summary"
    INTERNAL = "internal"


class LogRecord(BaseModel):
    """One decoded line of a session log."""

    model_config = ConfigDict(frozen=True)

    kind: RecordKind
    content: str | list[TextBlock] = ""
    is_compact_summary: bool = False


class SessionEntry(BaseModel):
    """One row of sessions-index.json.

    `first_prompt` is Claude Code's cached first message. It gets overwritten
    by /compact and is never used as a title. Unknown keys are kept so that
    search covers everything the index stores.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    session_id: str = Field(alias="sessionId")
    full_path: str | None = Field(default=None, alias="fullPath")
    created: str | None = None
    modified: str | None = None
    message_count: int | None = Field(default=None, alias="messageCount")
    first_prompt: str | None = Field(default=None, alias="firstPrompt")
    summary: str | None = None
    git_branch: str | None = Field(default=None, alias="gitBranch")
    is_sidechain: bool | None = Field(default=False, alias="isSidechain")

    @field_validator(
        "full_path", "created", "modified", "message_count",
        "first_prompt", "summary", "git_branch", "is_sidechain",
        mode="wrap",
    )
    @classmethod
    def _null_if_invalid(cls, value: Any, handler: Any) -> Any:
        # A mistyped optional field must not cost the whole row
        try:
            return handler(value)
        except ValidationError:
            return None

    @property
    def short_id(self) -> str:
        return self.session_id[:SHORT_ID_LEN]

    @property
    def path(self) -> Path:
        return Path(self.full_path or f"{self.session_id}.jsonl")

    @property
    def sort_key(self) -> str:
        return self.created or ""

    def is_sidechain_entry(self) -> bool:
        return bool(self.is_sidechain) or is_sidechain_file(self.path)

    def search_dump(self) -> str:
        return self.model_dump_json(by_alias=True)


@dataclass
class ProjectLocation:
    project_dir: Path
    index_path: Path


@dataclass
class ProjectIndex:
    location: ProjectLocation
    entries: list[SessionEntry]

    def newest_first(self) -> list[SessionEntry]:
        """Non-sidechain entries, most recently created first."""
        visible = [e for e in self.entries if not e.is_sidechain_entry()]
        return sorted(visible, key=lambda e: e.sort_key, reverse=True)

    def get(self, session_id: str) -> SessionEntry | None:
        for entry in self.entries:
            if entry.session_id == session_id:
                return entry
        return None

    def by_id(self) -> dict[str, SessionEntry]:
        return {e.session_id: e for e in self.entries}


@dataclass
class SearchHit:
    entry: SessionEntry
    title: str


@dataclass
class GrepHit:
    session_id: str
    path: Path
    title: str
    entry: SessionEntry | None = None

    @property
    def short_id(self) -> str:
        return self.session_id[:SHORT_ID_LEN]

    @property
    def created(self) -> str:
        return (self.entry.created or "") if self.entry else ""

    @property
    def summary(self) -> str:
        return (self.entry.summary or "") if self.entry else ""


@dataclass
class Turn:
    number: int
    role: Literal["user", "assistant"]
    text: str


@dataclass
class SessionInfo:
    session_id: str
    path: Path
    size_bytes: int
    mtime: datetime
    title: str
    entry: SessionEntry | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# JSONL Decoder
# ═══════════════════════════════════════════════════════════════════════════════


def is_sidechain_file(path: Path) -> bool:
    """Sub-agent logs (agent-*.jsonl) are never shown to the user."""
    return path.name.startswith(SIDECHAIN_PREFIX)


def is_session_file(path: Path) -> bool:
    return (
        path.suffix == ".jsonl"
        and not path.name.startswith(".")
        and not is_sidechain_file(path)
    )


def _record_kind(line_type: Any) -> RecordKind:
    if line_type in ("user", "human"):
        return RecordKind.USER
    if line_type == "assistant":
        return RecordKind.ASSISTANT
    if line_type == "summary":
        return RecordKind.SUMMARY
    return RecordKind.INTERNAL


def _normalize_content(content: Any) -> str | list[TextBlock]:
    """Keep string content as is. From block lists keep only the text blocks."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""

    blocks: list[TextBlock] = []
    for block in content:
        # tool_use, tool_result, thinking and image blocks are never displayed
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text", "")
            blocks.append(TextBlock(text=text if isinstance(text, str) else str(text)))
    return blocks


def decode_record(line: str) -> LogRecord | None:
    """Decode one JSONL line. Returns None for blank or malformed lines."""
    line = line.strip()
    if line.startswith("\ufeff"):
        line = line[1:]
    if not line:
        return None
    try:
        obj = json.loads(line, strict=False)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None

    msg_data = obj.get("message")
    content = msg_data.get("content", "") if isinstance(msg_data, dict) else ""

    return LogRecord(
        kind=_record_kind(obj.get("type")),
        content=_normalize_content(content),
        is_compact_summary=obj.get("isCompactSummary") is True,
    )


def iter_records(path: Path) -> Iterator[LogRecord]:
    """Stream decoded records of a log file in order, skipping bad lines.

    A line still being written by Claude Code is just another bad line.
    """
    skipped = 0
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            record = decode_record(line)
            if record is None:
                if line.strip():
                    skipped += 1
                continue
            yield record
    if skipped:
        logger.debug(f"Skipped {skipped} undecodable lines in {path.name}")


# ═══════════════════════════════════════════════════════════════════════════════
# Titles
# ═══════════════════════════════════════════════════════════════════════════════


def _is_injected(text: str) -> bool:
    """System/IDE tags (<command-name>, <ide_opened_file>, ...) start with '<'."""
    return text.startswith(RESERVED_MARKER)


def user_texts(record: LogRecord) -> list[str]:
    """Text the user actually typed in a user-turn record, stripped."""
    if isinstance(record.content, str):
        text = record.content.strip()
        if text and not _is_injected(text) and text != INTERRUPTED_PLACEHOLDER:
            return [text]
        return []

    texts = []
    for block in record.content:
        if isinstance(block, TextBlock):
            text = block.text.strip()
            if text and not _is_injected(text):
                texts.append(text)
    return texts


def assistant_texts(record: LogRecord) -> list[str]:
    if isinstance(record.content, str):
        return [record.content] if record.content else []
    return [b.text for b in record.content if isinstance(b, TextBlock) and b.text]


def extract_title(path: Path) -> str:
    """Return the first real user utterance of a session log.

    The index's firstPrompt gets replaced by a mid-conversation message
    after /compact, but the log keeps the original first turn at the top.
    Returns "" when there is none or the file cannot be read.
    """
    try:
        for record in iter_records(path):
            if record.kind != RecordKind.USER or record.is_compact_summary:
                continue
            texts = user_texts(record)
            if texts:
                return texts[0]
    except FileNotFoundError:
        return ""
    except OSError as e:
        logger.warning(f"Cannot read session file {path}: {e}")
    return ""


# ═══════════════════════════════════════════════════════════════════════════════
# Project Resolution
# ═══════════════════════════════════════════════════════════════════════════════


def encode_project_path(path: str) -> str:
    return path.replace("/", "-")


def _candidate_keys(path: str) -> list[str]:
    """Directory names Claude Code may have used for `path`.

    Older releases only replaced '/', newer ones replace every
    non-alphanumeric character ('.', '_', spaces) with '-'.
    """
    keys = [encode_project_path(path)]
    sanitized = re.sub(r"[^A-Za-z0-9]", "-", path)
    if sanitized not in keys:
        keys.append(sanitized)
    return keys


def find_project(start: str | Path, projects_dir: Path) -> ProjectLocation | None:
    """Walk up from `start` to the first ancestor that has a session index.

    Returns None when no ancestor below the filesystem root matches.
    """
    cwd = os.path.abspath(os.path.expanduser(str(start)))
    while cwd and cwd != os.path.dirname(cwd):
        for key in _candidate_keys(cwd):
            index_path = projects_dir / key / INDEX_FILENAME
            if index_path.is_file():
                logger.debug(f"Resolved {cwd} -> {index_path.parent}")
                return ProjectLocation(project_dir=index_path.parent, index_path=index_path)
        cwd = os.path.dirname(cwd)
    logger.debug(f"No {INDEX_FILENAME} found above {start} in {projects_dir}")
    return None


def require_project(start: str | Path, projects_dir: Path) -> ProjectLocation:
    location = find_project(start, projects_dir)
    if location is None:
        raise ContextMissingError(
            f"No {INDEX_FILENAME} found for current directory.\n"
            "Run this from your project directory (or any subdirectory)."
        )
    return location


# ═══════════════════════════════════════════════════════════════════════════════
# Index Store
# ═══════════════════════════════════════════════════════════════════════════════


def load_index(location: ProjectLocation) -> ProjectIndex:
    """Parse sessions-index.json. Raises IndexUnreadableError if unusable.

    A row is skipped only when it has no string `sessionId`. Mistyped
    optional fields are read as missing.
    """
    try:
        with open(location.index_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise IndexUnreadableError(f"Cannot read {location.index_path}: {e}") from e

    raw_entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(raw_entries, list):
        raise IndexUnreadableError(
            f"{location.index_path} has no 'entries' list"
        )

    entries: list[SessionEntry] = []
    for raw in raw_entries:
        try:
            entry = SessionEntry.model_validate(raw)
        except ValidationError as e:
            logger.debug(f"Skipping malformed index entry: {e.error_count()} errors")
            continue
        if not entry.full_path:
            entry = entry.model_copy(update={
                "full_path": str(location.project_dir / f"{entry.session_id}.jsonl")
            })
        entries.append(entry)

    logger.debug(f"Loaded {len(entries)} index entries from {location.index_path}")
    return ProjectIndex(location=location, entries=entries)


def try_load_index(location: ProjectLocation) -> ProjectIndex | None:
    """Best-effort variant for commands that still work without metadata."""
    try:
        return load_index(location)
    except IndexUnreadableError as e:
        logger.warning(f"Ignoring session index: {e.message}")
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# Search
# ═══════════════════════════════════════════════════════════════════════════════


def search_sessions(index: ProjectIndex, term: str = "") -> list[SearchHit]:
    """Match `term` against each entry's real title plus its index metadata.

    Case-insensitive substring match, newest first. An empty term lists
    every non-sidechain entry.
    """
    needle = term.lower()
    hits: list[SearchHit] = []
    for entry in index.newest_first():
        path = entry.path
        title = extract_title(path) if path.exists() else ""
        if needle:
            searchable = (title + " " + entry.search_dump()).lower()
            if needle not in searchable:
                continue
        hits.append(SearchHit(entry=entry, title=title))
    return hits


def session_files(project_dir: Path) -> list[Path]:
    """Every non-sidechain session log on disk, indexed or not."""
    try:
        return sorted(p for p in project_dir.iterdir() if is_session_file(p) and p.is_file())
    except OSError as e:
        logger.error(f"Cannot scan project directory {project_dir}: {e}")
        return []


def _file_contains(path: Path, needle: bytes) -> bool:
    try:
        with open(path, "rb") as f:
            for line in f:
                if needle in line:
                    return True
    except OSError as e:
        logger.warning(f"Cannot read session file {path}: {e}")
    return False


def grep_sessions(
    location: ProjectLocation, term: str, index: ProjectIndex | None = None
) -> list[GrepHit]:
    """Scan the raw contents of every session log for `term`.

    Slower than search_sessions but covers files the index has dropped.
    Matching is case-sensitive, like grep. Index metadata is optional.
    """
    if not term:
        raise UsageError("Usage: claude-sessions grep TERM")

    needle = term.encode("utf-8")
    index_map = index.by_id() if index else {}

    hits: list[GrepHit] = []
    for path in session_files(location.project_dir):
        if not _file_contains(path, needle):
            continue
        session_id = path.stem
        hits.append(GrepHit(
            session_id=session_id,
            path=path,
            title=extract_title(path),
            entry=index_map.get(session_id),
        ))

    hits.sort(key=lambda h: h.created, reverse=True)
    logger.debug(f"Grep '{term}': {len(hits)} matching files in {location.project_dir}")
    return hits


# ═══════════════════════════════════════════════════════════════════════════════
# Session Lookup, Reading & Resume
# ═══════════════════════════════════════════════════════════════════════════════


def resolve_session(project_dir: Path, prefix: str) -> Path:
    """Find the one session log whose ID starts with `prefix`."""
    if not prefix:
        raise UsageError("Session ID is required (first 8 characters of the UUID)")

    matches = [p for p in session_files(project_dir) if p.stem.startswith(prefix)]
    if not matches:
        raise SessionNotFoundError(f"Session not found: {prefix}")
    if len(matches) > 1:
        raise AmbiguousSessionError(prefix, [p.stem for p in matches])
    return matches[0]


def describe_session(location: ProjectLocation, prefix: str) -> SessionInfo:
    path = resolve_session(location.project_dir, prefix)
    session_id = path.stem

    index = try_load_index(location)
    entry = index.get(session_id) if index else None

    try:
        stat = path.stat()
    except OSError as e:
        raise SessionReadError(f"Cannot read session file {path}: {e}") from e
    return SessionInfo(
        session_id=session_id,
        path=path,
        size_bytes=stat.st_size,
        mtime=datetime.fromtimestamp(stat.st_mtime),
        title=extract_title(path),
        entry=entry,
    )


def read_transcript(path: Path, max_chars: int = 3000) -> list[Turn]:
    """Turn a session log into numbered user/assistant turns.

    Tool calls, tool results and injected tags are left out. Turns with no
    remaining text are dropped, and each turn is cut at `max_chars`.
    """
    turns: list[Turn] = []
    try:
        for record in iter_records(path):
            if record.kind == RecordKind.USER:
                role = "user"
                text = "\n".join(user_texts(record))
            elif record.kind == RecordKind.ASSISTANT:
                role = "assistant"
                text = "\n".join(assistant_texts(record))
            else:
                continue
            if not text:
                continue
            turns.append(Turn(number=len(turns) + 1, role=role, text=text[:max_chars]))
    except OSError as e:
        raise SessionReadError(f"Cannot read session file {path}: {e}") from e
    return turns


Runner = Callable[..., "subprocess.CompletedProcess[Any]"]


def resume_session(
    project_dir: Path,
    prefix: str,
    settings: Settings,
    runner: Runner = subprocess.run,
) -> int:
    """Hand a session over to `claude --resume` and wait for it to exit.

    Claude Code touches the log's mtime when resuming, which is what puts
    the session back into the editor's recent-sessions dropdown.
    """
    path = resolve_session(project_dir, prefix)
    session_id = path.stem
    command = [*settings.resume_command, session_id]

    logger.info(f"Resuming {session_id}: {shlex.join(command)}")
    try:
        result = runner(command)
    except FileNotFoundError as e:
        raise ResumeCommandError(
            f"Cannot run '{settings.resume_command[0]}': {e.strerror or e}"
        ) from e
    logger.debug(f"Resume command exited with {result.returncode}")
    return result.returncode
