"""Memoized whole-file session parsing for the list view."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cccontext.config import AutoCompactConfig
from cccontext.context_tracker import refresh_derived
from cccontext.models import (
    LatestUsage,
    SessionAggregate,
    extract_prompt_text,
    get_message,
    get_model,
    get_usage,
    has_compaction_marker,
    parse_record,
    parse_timestamp,
    session_id_from_path,
)
from cccontext.usage_calculator import calculate_cost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileFingerprint:
    """Modification time and size of a file when it was last parsed."""

    mtime_ns: int
    size: int


@dataclass(frozen=True)
class CacheStats:
    """Cache occupancy, for diagnostics."""

    cached_sessions: int
    file_stats: int


class SessionCache:
    """Parse session files, reusing results while the file is unchanged.

    Entries are keyed by session id; fingerprints by file path. Callers
    always get copies, so mutating a result never touches the cache.
    """

    def __init__(
        self,
        settings: AutoCompactConfig | None = None,
        context_window_override: int | None = None,
    ) -> None:
        self.settings = settings or AutoCompactConfig()
        self.context_window_override = context_window_override
        self._cache: dict[str, SessionAggregate] = {}
        self._file_stats: dict[Path, FileFingerprint] = {}

    def has_file_changed(self, file_path: Path) -> bool:
        """Check whether a file differs from its recorded fingerprint.

        Unknown and unreadable files count as changed.
        """
        try:
            stat = file_path.stat()
        except OSError:
            return True
        return self._file_stats.get(file_path) != FileFingerprint(stat.st_mtime_ns, stat.st_size)

    def parse_and_cache_session(self, file_path: Path) -> SessionAggregate | None:
        """Return the aggregate for a session file, parsing only if it changed.

        Returns:
            A copy of the aggregate, or None if the file cannot be read.
        """
        session_id = session_id_from_path(file_path)
        try:
            stat = file_path.stat()
        except OSError as e:
            logger.debug("Cannot stat %s: %s", file_path, e)
            return None

        fingerprint = FileFingerprint(stat.st_mtime_ns, stat.st_size)
        cached = self._cache.get(session_id)
        if cached is not None and self._file_stats.get(file_path) == fingerprint:
            return copy.deepcopy(cached)

        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug("Cannot read %s: %s", file_path, e)
            return None

        aggregate = self._parse(session_id, file_path, text.splitlines())
        aggregate.last_modified = aggregate.last_timestamp or datetime.fromtimestamp(stat.st_mtime, UTC)
        refresh_derived(aggregate, self.settings, self.context_window_override)

        self._cache[session_id] = aggregate
        self._file_stats[file_path] = fingerprint
        return copy.deepcopy(aggregate)

    def _parse(self, session_id: str, file_path: Path, lines: list[str]) -> SessionAggregate:
        aggregate = SessionAggregate(session_id=session_id, file_path=file_path)

        # Most recent model first, so every message is priced the same way
        for line in reversed(lines):
            record = parse_record(line)
            if record is None:
                continue
            model = get_model(get_message(record))
            if model:
                aggregate.model = model
                break

        for line in reversed(lines):
            record = parse_record(line)
            if record is None:
                continue

            timestamp = parse_timestamp(record.get("timestamp"))
            if timestamp is not None:
                if aggregate.last_timestamp is None:
                    aggregate.last_timestamp = timestamp
                aggregate.first_timestamp = timestamp

            if not aggregate.is_compacted and has_compaction_marker(record):
                aggregate.is_compacted = True

            message = get_message(record)
            if message is None:
                continue
            aggregate.message_count += 1

            usage = get_usage(message)
            if usage is not None:
                cost = calculate_cost(usage, aggregate.model)
                aggregate.total_input_tokens += cost.input_tokens
                aggregate.total_output_tokens += cost.output_tokens
                aggregate.total_cache_creation_tokens += cost.cache_creation_tokens
                aggregate.total_cost += cost.total_cost
                if aggregate.total_cache_tokens == 0 and cost.cache_tokens > 0:
                    aggregate.total_cache_tokens = cost.cache_tokens
                if aggregate.latest_usage is None:
                    aggregate.latest_usage = LatestUsage(
                        input=cost.input_tokens,
                        output=cost.output_tokens,
                        cache=cost.cache_tokens,
                        cache_creation=cost.cache_creation_tokens,
                        timestamp=timestamp,
                    )

            role = message.get("role")
            if role == "assistant":
                aggregate.turns += 1
            elif role == "user" and not aggregate.latest_prompt:
                prompt = extract_prompt_text(message.get("content"))
                if prompt:
                    aggregate.latest_prompt = prompt
                    aggregate.latest_prompt_time = timestamp

        return aggregate

    def get_cached_session(self, session_id: str) -> SessionAggregate | None:
        """Return a copy of a memoized aggregate without touching the disk."""
        aggregate = self._cache.get(session_id)
        return copy.deepcopy(aggregate) if aggregate is not None else None

    def clear_session(self, file_path: Path) -> None:
        """Forget the memo and fingerprint for one file."""
        self._cache.pop(session_id_from_path(file_path), None)
        self._file_stats.pop(file_path, None)

    def clear_all(self) -> None:
        """Forget every memo and fingerprint."""
        self._cache.clear()
        self._file_stats.clear()

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(cached_sessions=len(self._cache), file_stats=len(self._file_stats))
