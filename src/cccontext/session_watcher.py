"""Discover, tail and aggregate Claude Code session files.

The watcher owns one SessionAggregate and one FileWatchState per tailed
session. Appended bytes are read incrementally from the stored offset. A
file that shrinks, jumps by more than compact_size_delta bytes, or whose
modification time jumps by more than compact_quiet_period seconds is
treated as rewritten (Claude Code's /compact replaces the whole file) and
is reparsed from scratch instead of merged.

Nothing here runs on a background thread. Watch backends queue raw
changes, and process_events() routes them, drives the per-session
debouncers, and runs every handler on the caller's thread.
"""

from __future__ import annotations

import copy
import functools
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cccontext.config import Config
from cccontext.context_tracker import refresh_derived
from cccontext.events import (
    ErrorEvent,
    EventBus,
    EventKind,
    MessageEvent,
    SessionLifecycleEvent,
    SessionPathEvent,
)
from cccontext.fs_watch import FsEvent, FsEventType, PathWatch, PathWatchFactory, create_path_watch, walk_files
from cccontext.models import (
    JSONL_SUFFIX,
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
from cccontext.scheduler import Clock, Debouncer, SystemClock
from cccontext.usage_calculator import calculate_cost

logger = logging.getLogger(__name__)


@dataclass
class FileWatchState:
    """Read position and last seen fingerprint of a tailed file."""

    file_path: Path
    byte_offset: int = 0
    last_known_size: int = 0
    last_known_mtime: float = 0.0


@dataclass(frozen=True)
class ActiveSession:
    """The most recently modified session file."""

    session_id: str
    file_path: Path


@dataclass(frozen=True)
class WatcherStats:
    """Counts of what the watcher is holding, for diagnostics."""

    active_sessions: int
    watched_files: int
    cached_files: int
    directory_watching: bool


def _modified_at(aggregate: SessionAggregate, mtime: float) -> datetime:
    return aggregate.last_timestamp or datetime.fromtimestamp(mtime, UTC)


def process_message(aggregate: SessionAggregate, record: Any) -> None:
    """Fold one parsed JSONL record into an aggregate.

    Never raises on malformed input: a missing message or usage contributes
    nothing and invalid token fields count as zero. Derived fields are not
    touched here; callers refresh them once per batch.
    """
    if not isinstance(record, dict):
        return

    timestamp = parse_timestamp(record.get("timestamp"))
    if timestamp is not None:
        if aggregate.first_timestamp is None:
            aggregate.first_timestamp = timestamp
        aggregate.last_timestamp = timestamp

    if has_compaction_marker(record):
        aggregate.is_compacted = True

    message = get_message(record)
    if message is None:
        return
    aggregate.message_count += 1

    model = get_model(message)
    if model:
        aggregate.model = model

    usage = get_usage(message)
    if usage is not None:
        cost = calculate_cost(usage, aggregate.model)
        aggregate.total_input_tokens += cost.input_tokens
        aggregate.total_output_tokens += cost.output_tokens
        aggregate.total_cache_creation_tokens += cost.cache_creation_tokens
        if cost.cache_tokens > 0:
            aggregate.total_cache_tokens = cost.cache_tokens
        aggregate.total_cost += cost.total_cost
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
    elif role == "user":
        prompt = extract_prompt_text(message.get("content"))
        if prompt:
            aggregate.latest_prompt = prompt
            aggregate.latest_prompt_time = timestamp


def _split_records(data: bytes) -> tuple[int, list[dict[str, Any]]]:
    """Parse the complete lines in a chunk of bytes.

    A trailing fragment without a newline is consumed only if it already
    parses as a record; otherwise it is left for the next read.

    Returns:
        Tuple of (bytes consumed, parsed records). Malformed lines are
        skipped but still count as consumed.
    """
    last_newline = data.rfind(b"\n")
    complete = data[: last_newline + 1]
    tail = data[last_newline + 1 :]

    records: list[dict[str, Any]] = []
    for line in complete.decode("utf-8", errors="replace").splitlines():
        record = parse_record(line)
        if record is not None:
            records.append(record)

    consumed = len(complete)
    if not tail.strip():
        consumed = len(data)
    else:
        record = parse_record(tail.decode("utf-8", errors="replace"))
        if record is not None:
            records.append(record)
            consumed = len(data)
    return consumed, records


class SessionWatcher:
    """Watch the projects directory and tail individual session files."""

    def __init__(
        self,
        config: Config | None = None,
        watch_factory: PathWatchFactory | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or Config()
        self.settings = self.config.watcher
        self.projects_dir = self.config.resolved_projects_dir
        self.events = EventBus()

        self._watch_factory = watch_factory or functools.partial(create_path_watch, self.settings.backend)
        self._clock = clock or SystemClock()

        self._sessions: dict[str, SessionAggregate] = {}
        self._states: dict[str, FileWatchState] = {}
        self._file_watches: dict[str, PathWatch] = {}
        self._debouncers: dict[str, Debouncer] = {}
        self._directory_watch: PathWatch | None = None
        self._cached_files: set[Path] | None = None

    # -- discovery -------------------------------------------------------

    @property
    def is_directory_watching(self) -> bool:
        return self._directory_watch is not None

    @property
    def watched_sessions(self) -> list[str]:
        return list(self._states)

    def get_all_jsonl_files(self) -> list[Path]:
        """List session files under the projects directory.

        The first successful scan is cached. Files announced by the
        directory watch are added to the cache as they appear; call
        invalidate_cache() to force a full rescan.
        """
        if self._cached_files is not None:
            return sorted(self._cached_files)

        if not self.projects_dir.is_dir():
            logger.debug("Projects directory %s does not exist", self.projects_dir)
            return []

        files = walk_files(self.projects_dir, JSONL_SUFFIX)
        self._cached_files = set(files)
        logger.debug("Found %d session files under %s", len(files), self.projects_dir)
        return sorted(files)

    def invalidate_cache(self) -> None:
        """Forget the scanned file list so the next call rescans."""
        self._cached_files = None

    def find_active_session(self) -> ActiveSession | None:
        """Return the session file modified most recently, if any."""
        latest: tuple[Path, float] | None = None
        for path in self.get_all_jsonl_files():
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if latest is None or mtime > latest[1]:
                latest = (path, mtime)

        if latest is None:
            return None
        return ActiveSession(session_id=session_id_from_path(latest[0]), file_path=latest[0])

    # -- directory watch -------------------------------------------------

    def start_directory_watch(self) -> None:
        """Start watching the projects directory. A no-op if already watching."""
        if self._directory_watch is not None:
            return

        self.get_all_jsonl_files()

        watch = self._watch_factory(self.projects_dir, True)
        try:
            watch.start()
        except OSError as e:
            logger.warning("Cannot watch %s: %s", self.projects_dir, e)
            self.events.emit(EventKind.ERROR, ErrorEvent(session_id="", error=e))
            return

        self._directory_watch = watch
        logger.debug("Watching %s", self.projects_dir)
        self.events.emit(EventKind.DIRECTORY_WATCH_STARTED)

    def _handle_directory_event(self, event: FsEvent) -> None:
        if not event.path.name.endswith(JSONL_SUFFIX):
            return

        payload = SessionPathEvent(session_id=session_id_from_path(event.path), file_path=event.path)
        if event.event_type is FsEventType.ADD:
            if self._cached_files is not None:
                self._cached_files.add(event.path)
            self.events.emit(EventKind.SESSION_ADDED, payload)
        elif event.event_type is FsEventType.UNLINK:
            if self._cached_files is not None:
                self._cached_files.discard(event.path)
            self.events.emit(EventKind.SESSION_REMOVED, payload)
            self.stop_watching(payload.session_id)
        else:
            self.events.emit(EventKind.SESSION_UPDATED, payload)

    # -- tailing ---------------------------------------------------------

    def watch_session(self, session_id: str, file_path: Path) -> None:
        """Start tailing one session file.

        Existing content is parsed once to build the starting aggregate;
        only bytes appended afterwards are read incrementally. A no-op if
        the session is already tailed.
        """
        if session_id in self._states:
            return

        try:
            stat = file_path.stat()
        except OSError as e:
            self.events.emit(EventKind.ERROR, ErrorEvent(session_id=session_id, error=e))
            return

        self._states[session_id] = FileWatchState(
            file_path=file_path,
            byte_offset=stat.st_size,
            last_known_size=stat.st_size,
            last_known_mtime=stat.st_mtime,
        )
        self.events.emit(EventKind.SESSION_STARTED, SessionLifecycleEvent(session_id=session_id, file_path=file_path))
        self.read_existing_data(session_id, file_path)

        if session_id not in self._states:
            # A subscriber stopped the session while it was loading
            return

        self._debouncers[session_id] = Debouncer(
            self.settings.file_debounce,
            functools.partial(self._on_file_settled, session_id),
            self._clock,
        )
        watch = self._watch_factory(file_path, False)
        try:
            watch.start()
        except OSError as e:
            self.events.emit(EventKind.ERROR, ErrorEvent(session_id=session_id, error=e))
            return
        self._file_watches[session_id] = watch

    def read_existing_data(self, session_id: str, file_path: Path) -> SessionAggregate | None:
        """Parse a whole file into a fresh aggregate, replacing the old one.

        The aggregate is only kept for sessions being tailed.

        Returns:
            A copy of the new aggregate, or None if the file could not be
            read (an ERROR event is emitted instead).
        """
        try:
            data = file_path.read_bytes()
            mtime = file_path.stat().st_mtime
        except OSError as e:
            self._report_read_error(session_id, e)
            return None

        aggregate = SessionAggregate(session_id=session_id, file_path=file_path)
        consumed, records = _split_records(data)
        for record in records:
            process_message(aggregate, record)
        aggregate.last_modified = _modified_at(aggregate, mtime)
        refresh_derived(aggregate, self.config.auto_compact, self.config.context_window_override)

        state = self._states.get(session_id)
        if state is not None:
            self._sessions[session_id] = aggregate
            state.byte_offset = consumed
            state.last_known_size = len(data)
            state.last_known_mtime = mtime

        snapshot = copy.deepcopy(aggregate)
        self.events.emit(EventKind.SESSION_DATA, snapshot)
        return snapshot

    def _is_rewritten(self, state: FileWatchState, size: int, mtime: float) -> bool:
        if size < state.last_known_size:
            return True
        if size - state.byte_offset > self.settings.compact_size_delta:
            return True
        return bool(state.last_known_mtime) and mtime - state.last_known_mtime > self.settings.compact_quiet_period

    def handle_file_change(self, session_id: str, file_path: Path) -> None:
        """Bring a tailed session up to date with its file.

        Appends are read from the stored offset and folded into the
        existing aggregate. A rewritten file is reparsed from scratch and
        announced with COMPACT_DETECTED. Unknown sessions are ignored.
        """
        state = self._states.get(session_id)
        if state is None:
            logger.debug("Ignoring change for untracked session %s", session_id)
            return

        try:
            stat = file_path.stat()
        except OSError as e:
            self._report_read_error(session_id, e)
            return

        size, mtime = stat.st_size, stat.st_mtime
        aggregate = self._sessions.get(session_id)

        if aggregate is None or self._is_rewritten(state, size, mtime):
            logger.debug("Session %s was rewritten, reparsing %s", session_id, file_path)
            self._sessions.pop(session_id, None)
            state.byte_offset = 0
            if self.read_existing_data(session_id, file_path) is not None:
                self.events.emit(
                    EventKind.COMPACT_DETECTED, SessionPathEvent(session_id=session_id, file_path=file_path)
                )
            return

        if size == state.byte_offset:
            state.last_known_size = size
            state.last_known_mtime = mtime
            return

        try:
            with file_path.open("rb") as f:
                f.seek(state.byte_offset)
                data = f.read(size - state.byte_offset)
        except OSError as e:
            self._report_read_error(session_id, e)
            return

        consumed, records = _split_records(data)
        state.byte_offset += consumed
        state.last_known_size = size
        state.last_known_mtime = mtime

        if not records:
            return

        # Each MESSAGE carries the aggregate as it stood right after its record
        messages: list[MessageEvent] = []
        for record in records:
            process_message(aggregate, record)
            aggregate.last_modified = _modified_at(aggregate, mtime)
            refresh_derived(aggregate, self.config.auto_compact, self.config.context_window_override)
            messages.append(MessageEvent(session_id=session_id, data=record, session_data=copy.deepcopy(aggregate)))

        self.events.emit(EventKind.SESSION_DATA, copy.deepcopy(aggregate))
        for message in messages:
            self.events.emit(EventKind.MESSAGE, message)

    def _report_read_error(self, session_id: str, error: OSError) -> None:
        self.events.emit(EventKind.ERROR, ErrorEvent(session_id=session_id, error=error))
        if isinstance(error, FileNotFoundError):
            logger.debug("Session file for %s is gone, stopping", session_id)
            self.stop_watching(session_id)

    def _on_file_settled(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        try:
            self.handle_file_change(session_id, state.file_path)
        except Exception as e:
            logger.exception("Failed to update session %s", session_id)
            self.events.emit(EventKind.ERROR, ErrorEvent(session_id=session_id, error=e))

    # -- event pump ------------------------------------------------------

    def process_events(self) -> int:
        """Route queued filesystem changes and flush settled sessions.

        Returns:
            Number of filesystem events routed.
        """
        count = 0
        if self._directory_watch is not None:
            for event in self._directory_watch.poll():
                self._handle_directory_event(event)
                count += 1

        for session_id, watch in list(self._file_watches.items()):
            for _event in watch.poll():
                debouncer = self._debouncers.get(session_id)
                if debouncer is not None:
                    debouncer.trigger()
                count += 1

        for debouncer in list(self._debouncers.values()):
            debouncer.poll()
        return count

    # -- accessors and teardown -----------------------------------------

    def get_session_data(self, session_id: str) -> SessionAggregate | None:
        """Return a copy of a session's aggregate, or None."""
        aggregate = self._sessions.get(session_id)
        return copy.deepcopy(aggregate) if aggregate is not None else None

    def get_watch_state(self, session_id: str) -> FileWatchState | None:
        """Return a copy of a tailed session's read state, or None."""
        state = self._states.get(session_id)
        return copy.copy(state) if state is not None else None

    def get_memory_stats(self) -> WatcherStats:
        return WatcherStats(
            active_sessions=len(self._sessions),
            watched_files=len(self._file_watches),
            cached_files=len(self._cached_files or ()),
            directory_watching=self.is_directory_watching,
        )

    def stop_watching(self, session_id: str) -> None:
        """Stop tailing a session and drop its state. A no-op if not tailed."""
        state = self._states.pop(session_id, None)
        if state is None:
            return

        debouncer = self._debouncers.pop(session_id, None)
        if debouncer is not None:
            debouncer.cancel()

        watch = self._file_watches.pop(session_id, None)
        if watch is not None:
            try:
                watch.stop()
            except (OSError, RuntimeError) as e:
                logger.debug("Error closing watch for %s: %s", session_id, e)

        self._sessions.pop(session_id, None)
        logger.debug("Stopped watching session %s", session_id)
        self.events.emit(
            EventKind.SESSION_STOPPED, SessionLifecycleEvent(session_id=session_id, file_path=state.file_path)
        )

    def stop_all(self) -> None:
        """Stop every watch and clear all in-memory state."""
        for session_id in list(self._states):
            self.stop_watching(session_id)

        if self._directory_watch is not None:
            try:
                self._directory_watch.stop()
            except (OSError, RuntimeError) as e:
                logger.debug("Error closing directory watch: %s", e)
            self._directory_watch = None

        self._sessions.clear()
        self._cached_files = None
