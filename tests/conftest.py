"""
Shared fixtures for chat-mirror tests.

All tests run against a fixed clock at 20:00 local time today, and every
session file gets an explicit mtime relative to it, so discovery windows
are deterministic regardless of when the suite runs.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from chat_mirror.config import SyncConfig
from chat_mirror.orchestrator import SyncOrchestrator

FIXED_NOW = datetime.now().astimezone().replace(hour=20, minute=0, second=0, microsecond=0)


def iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def minutes_ago(minutes: float) -> datetime:
    return FIXED_NOW - timedelta(minutes=minutes)


def write_jsonl(path: Path, records, append: bool = False) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a" if append else "w", encoding="utf-8") as f:
        for record in records:
            f.write((record if isinstance(record, str) else json.dumps(record)) + "\n")
    return path


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def set_mtime(path: Path, moment: datetime, up_to: Path = None) -> None:
    """Set mtime on path and, if given, on every ancestor up to and including up_to."""
    ts = moment.timestamp()
    os.utime(path, (ts, ts))
    if up_to is None:
        return
    current = path.parent
    while True:
        os.utime(current, (ts, ts))
        if current == up_to or current == current.parent:
            break
        current = current.parent


def claude_user(text, moment=None, **extra):
    record = {
        "type": "user",
        "sessionId": "0f3c2a9e-1111-2222-3333-444455556666",
        "timestamp": iso(moment or minutes_ago(10)),
        "message": {"role": "user", "content": text},
    }
    record.update(extra)
    return record


def claude_assistant(*texts, moment=None):
    return {
        "type": "assistant",
        "timestamp": iso(moment or minutes_ago(9)),
        "message": {
            "role": "assistant",
            "content": [{"type": "text", "text": text} for text in texts],
        },
    }


def claude_summary(summary="Greeting exchange"):
    return {"type": "summary", "summary": summary, "leafUuid": "a1b2c3"}


def codex_meta(cwd="/home/dev/code/widget"):
    return {
        "timestamp": iso(minutes_ago(15)),
        "type": "session_meta",
        "payload": {"id": "5973b6c0-94b8-487b-a530-2aeb6098ae0e", "cwd": cwd},
    }


def codex_message(role, text, moment=None):
    block_type = "input_text" if role == "user" else "output_text"
    return {
        "timestamp": iso(moment or minutes_ago(10)),
        "type": "response_item",
        "payload": {"type": "message", "role": role, "content": [{"type": block_type, "text": text}]},
    }


def gemini_session(messages, session_id="7d1e4f2a-aaaa-bbbb-cccc-ddddeeeeffff"):
    return {
        "sessionId": session_id,
        "projectHash": "9f86d081884c7d65",
        "startTime": iso(minutes_ago(20)),
        "lastUpdated": iso(minutes_ago(1)),
        "messages": messages,
    }


def gemini_message(kind, text, moment=None):
    return {"id": f"{kind}-{text[:8]}", "timestamp": iso(moment or minutes_ago(10)), "type": kind, "content": text}


@pytest.fixture
def roots(tmp_path):
    paths = {
        "claude": tmp_path / "claude" / "projects",
        "codex": tmp_path / "codex" / "sessions",
        "gemini": tmp_path / "gemini" / "tmp",
        "vault": tmp_path / "vault",
        "state": tmp_path / "state",
    }
    for key in ("claude", "codex", "gemini"):
        paths[key].mkdir(parents=True)
    return paths


@pytest.fixture
def config(roots):
    return SyncConfig(
        destination=str(roots["vault"]),
        state_dir=str(roots["state"]),
        min_session_bytes=0,
        providers={
            "claude": {"enabled": True, "root": str(roots["claude"])},
            "codex": {"enabled": True, "root": str(roots["codex"])},
            "gemini": {"enabled": True, "root": str(roots["gemini"])},
        },
    )


@pytest.fixture
def make_orchestrator():
    def factory(config, registry=None, clock=lambda: FIXED_NOW):
        return SyncOrchestrator.from_config(config, registry=registry, clock=clock)
    return factory
