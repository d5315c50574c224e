"""Session data model and JSONL record helpers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, cast

from cccontext.auto_compact import AutoCompactInfo

JSONL_SUFFIX = ".jsonl"
UNKNOWN_MODEL = "unknown"

COMPACTION_MARKERS = (
    "Previous conversation summary",
    "Previous conversation compacted",
)


class WarningLevel(StrEnum):
    """Usage of the nominal context window."""

    NORMAL = "normal"
    WARNING = "warning"  # >= 80%
    SEVERE = "severe"  # >= 90%
    CRITICAL = "critical"  # >= 95%


@dataclass
class LatestUsage:
    """Token breakdown of the most recent usage-bearing message."""

    input: int = 0
    output: int = 0
    cache: int = 0
    cache_creation: int = 0
    timestamp: datetime | None = None

    @property
    def total(self) -> int:
        """Input plus output tokens of the message."""
        return self.input + self.output


def _empty_auto_compact() -> AutoCompactInfo:
    return AutoCompactInfo()


@dataclass
class SessionAggregate:
    """Running totals and derived view for one session file."""

    session_id: str
    file_path: Path

    # Rolling sums
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_tokens: int = 0  # latest observed cache-read value, not a sum
    total_cache_creation_tokens: int = 0
    total_cost: float = 0.0
    turns: int = 0
    message_count: int = 0

    # Latest values
    model: str = UNKNOWN_MODEL
    model_name: str = ""
    latest_prompt: str = ""
    latest_prompt_time: datetime | None = None
    latest_usage: LatestUsage | None = None

    # Derived, recomputed on every update
    context_window: int = 0
    usage_percentage: float = 0.0
    remaining_tokens: int = 0
    remaining_percentage: float = 100.0
    average_tokens_per_turn: int = 0
    estimated_remaining_turns: float = 0.0
    warning_level: WarningLevel = WarningLevel.NORMAL
    auto_compact: AutoCompactInfo = field(default_factory=_empty_auto_compact)

    # Bookkeeping
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None
    last_modified: datetime | None = None
    is_compacted: bool = False

    @property
    def total_tokens(self) -> int:
        """Input plus output tokens. Cache tokens are tracked separately."""
        return self.total_input_tokens + self.total_output_tokens

    @property
    def context_tokens(self) -> int:
        """Tokens occupying the context window: the total plus the latest cache read."""
        return self.total_tokens + self.total_cache_tokens


def session_id_from_path(path: Path) -> str:
    """Derive a session id from a JSONL file name."""
    return path.name[: -len(JSONL_SUFFIX)] if path.name.endswith(JSONL_SUFFIX) else path.stem


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO timestamp, returning None when absent or invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive timestamps are taken as UTC so they compare with file mtimes
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def parse_record(line: str) -> dict[str, Any] | None:
    """Parse one JSONL line into a record.

    Returns:
        The record dict, or None for blank lines, invalid JSON and JSON
        values that are not objects (a bare ``null`` included).
    """
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return cast(dict[str, Any], data)


def get_message(record: dict[str, Any]) -> dict[str, Any] | None:
    """Return the record's message object if it has a usable one."""
    message = record.get("message")
    if isinstance(message, dict):
        return cast(dict[str, Any], message)
    return None


def get_usage(message: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return the message's usage object if it has a usable one."""
    if message is None:
        return None
    usage = message.get("usage")
    if isinstance(usage, dict):
        return cast(dict[str, Any], usage)
    return None


def get_model(message: dict[str, Any] | None) -> str | None:
    """Return the message's model id, or None."""
    if message is None:
        return None
    model = message.get("model")
    if isinstance(model, str) and model:
        return model
    return None


def extract_prompt_text(content: object) -> str:
    """Extract prompt text from message content.

    Plain strings are returned as is. For a list of content blocks the
    first ``text`` block wins.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for item in cast(list[Any], content):
            if isinstance(item, dict) and item.get("type") == "text":
                text = item.get("text")
                return text if isinstance(text, str) else ""
    return ""


def _iter_text(content: object) -> list[str]:
    if isinstance(content, str):
        return [content]
    parts: list[str] = []
    if isinstance(content, list):
        for item in cast(list[Any], content):
            if isinstance(item, dict) and item.get("type") == "text":
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
    return parts


def has_compaction_marker(record: dict[str, Any]) -> bool:
    """Check whether a record carries a /compact summary."""
    message = get_message(record)
    if message is None:
        return False
    for text in _iter_text(message.get("content")):
        if any(marker in text for marker in COMPACTION_MARKERS):
            return True
    return False
