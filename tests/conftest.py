"""Shared fixtures: a throwaway ~/.claude with one project and its logs."""

import json
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from claude_sessions.core import INDEX_FILENAME, ProjectLocation, encode_project_path


def user(content, **extra):
    return {"type": "user", "message": {"role": "user", "content": content}, **extra}


def assistant(content, **extra):
    return {"type": "assistant", "message": {"role": "assistant", "content": content}, **extra}


def text(value):
    return {"type": "text", "text": value}


def write_jsonl(path: Path, records: list) -> Path:
    """Write records one per line. Strings are written verbatim (for broken lines)."""
    with open(path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(record if isinstance(record, str) else json.dumps(record))
            f.write("\n")
    return path


@dataclass
class ClaudeHome:
    claude_dir: Path
    workdir: Path
    project_dir: Path
    entries: list[dict] = field(default_factory=list)

    @property
    def projects_dir(self) -> Path:
        return self.claude_dir / "projects"

    @property
    def location(self) -> ProjectLocation:
        return ProjectLocation(
            project_dir=self.project_dir,
            index_path=self.project_dir / INDEX_FILENAME,
        )

    def add_session(self, session_id: str, records: list, indexed: bool = True, **meta) -> Path:
        path = write_jsonl(self.project_dir / f"{session_id}.jsonl", records)
        if indexed:
            entry = {
                "sessionId": session_id,
                "fullPath": str(path),
                "created": "2026-01-01T00:00:00.000Z",
                "modified": "2026-01-01T00:00:00.000Z",
                "messageCount": len(records),
                "firstPrompt": "",
                "summary": "",
                "gitBranch": "",
                "isSidechain": False,
            }
            entry.update(meta)
            self.entries.append(entry)
            self.write_index()
        return path

    def write_index(self, data=None) -> Path:
        index_path = self.project_dir / INDEX_FILENAME
        if data is None:
            data = {"version": 1, "entries": self.entries}
        if isinstance(data, str):
            index_path.write_text(data, encoding="utf-8")
        else:
            index_path.write_text(json.dumps(data), encoding="utf-8")
        return index_path


@pytest.fixture
def claude_home(tmp_path):
    """Simulates ~/.claude/projects/-<tmp>-work-myproject/ with an empty index."""
    claude_dir = tmp_path / "claude"
    workdir = tmp_path / "work" / "myproject"
    workdir.mkdir(parents=True)
    project_dir = claude_dir / "projects" / encode_project_path(str(workdir))
    project_dir.mkdir(parents=True)

    home = ClaudeHome(claude_dir=claude_dir, workdir=workdir, project_dir=project_dir)
    home.write_index()
    return home
