"""Shared fixtures and record builders for cccontext tests."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from cccontext.config import Config, WatcherBackend, WatcherConfig
from cccontext.logging_config import LOGGER_NAME

SONNET = "claude-3-5-sonnet-20241022"


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def monotonic(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def user_record(content: Any = "hello", timestamp: str | None = "2026-01-17T21:35:00Z") -> dict[str, Any]:
    """Build a user-role JSONL record."""
    record: dict[str, Any] = {"type": "user", "message": {"role": "user", "content": content}}
    if timestamp is not None:
        record["timestamp"] = timestamp
    return record


def assistant_record(
    input_tokens: Any = 100,
    output_tokens: Any = 200,
    cache_read: Any = 0,
    cache_creation: Any = 0,
    model: str | None = SONNET,
    content: Any = "ok",
    timestamp: str | None = "2026-01-17T21:35:10Z",
) -> dict[str, Any]:
    """Build an assistant-role JSONL record with usage."""
    message: dict[str, Any] = {
        "role": "assistant",
        "content": content,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cache_read_input_tokens": cache_read,
            "cache_creation_input_tokens": cache_creation,
        },
    }
    if model is not None:
        message["model"] = model
    record: dict[str, Any] = {"type": "assistant", "message": message}
    if timestamp is not None:
        record["timestamp"] = timestamp
    return record


def _encode(records: list[Any]) -> str:
    return "".join(json.dumps(record) + "\n" for record in records)


def write_jsonl(path: Path, records: list[Any]) -> Path:
    """Write records to a JSONL file, replacing its contents."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_encode(records), encoding="utf-8")
    return path


def append_jsonl(path: Path, records: list[Any]) -> None:
    """Append records to a JSONL file."""
    with path.open("a", encoding="utf-8") as f:
        f.write(_encode(records))


def append_raw(path: Path, text: str) -> None:
    """Append raw text to a file."""
    with path.open("a", encoding="utf-8") as f:
        f.write(text)


@pytest.fixture
def clock() -> ManualClock:
    """A manually advanced clock."""
    return ManualClock()


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    """An empty projects directory."""
    root = tmp_path / "projects"
    root.mkdir()
    return root


@pytest.fixture
def project_dir(projects_dir: Path) -> Path:
    """One encoded project folder inside the projects directory."""
    folder = projects_dir / "-home-user-myproject"
    folder.mkdir()
    return folder


@pytest.fixture
def config(projects_dir: Path) -> Config:
    """Config pointed at the temporary projects directory, polling backend."""
    return Config(
        projects_dir=projects_dir,
        watcher=WatcherConfig(backend=WatcherBackend.POLLING),
    )


@pytest.fixture(autouse=True)
def reset_package_logger() -> Iterator[None]:
    """Undo any handlers and levels set up by setup_logging."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
