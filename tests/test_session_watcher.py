"""Tests for cccontext.session_watcher module."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pytest

from cccontext.config import Config
from cccontext.events import ErrorEvent, EventKind, MessageEvent, SessionLifecycleEvent, SessionPathEvent
from cccontext.fs_watch import PathWatch, PollingPathWatch
from cccontext.models import SessionAggregate
from cccontext.session_cache import SessionCache
from cccontext.session_watcher import SessionWatcher, process_message

from conftest import ManualClock, append_jsonl, append_raw, assistant_record, user_record, write_jsonl

MARKER = "This session is being continued. Previous conversation summary: the user asked for tests."


class RecordingFactory:
    """Path-watch factory that keeps every watch it builds."""

    def __init__(self) -> None:
        self.created: list[PathWatch] = []

    def __call__(self, path: Path, recursive: bool) -> PathWatch:
        watch = PollingPathWatch(path, recursive)
        self.created.append(watch)
        return watch


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def watcher(config: Config, factory: RecordingFactory, clock: ManualClock) -> SessionWatcher:
    return SessionWatcher(config, watch_factory=factory, clock=clock)


@pytest.fixture
def recorded(watcher: SessionWatcher) -> list[tuple[EventKind, Any]]:
    """Every event the watcher emits, in order."""
    events: list[tuple[EventKind, Any]] = []
    for kind in EventKind:
        watcher.events.subscribe(kind, lambda payload, kind=kind: events.append((kind, payload)))
    return events


def kinds(events: list[tuple[EventKind, Any]]) -> list[EventKind]:
    return [kind for kind, _ in events]


def payloads(events: list[tuple[EventKind, Any]], kind: EventKind) -> list[Any]:
    return [payload for event_kind, payload in events if event_kind is kind]


class TestDiscovery:
    """Tests for file discovery and active-session lookup."""

    def test_finds_nested_files(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """Should find session files in project folders and skip other files."""
        a = write_jsonl(project_dir / "a.jsonl", [])
        b = write_jsonl(project_dir / "sub" / "b.jsonl", [])
        (project_dir / "notes.txt").write_text("x", encoding="utf-8")

        assert watcher.get_all_jsonl_files() == sorted([a, b])

    def test_scan_is_cached_until_invalidated(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """Files created after the first scan appear only after invalidation."""
        write_jsonl(project_dir / "a.jsonl", [])
        assert len(watcher.get_all_jsonl_files()) == 1

        write_jsonl(project_dir / "b.jsonl", [])
        assert len(watcher.get_all_jsonl_files()) == 1

        watcher.invalidate_cache()
        assert len(watcher.get_all_jsonl_files()) == 2

    def test_missing_root(self, tmp_path: Path, clock: ManualClock) -> None:
        """A missing projects directory yields nothing and does not raise."""
        watcher = SessionWatcher(Config(projects_dir=tmp_path / "nope"), clock=clock)
        assert watcher.get_all_jsonl_files() == []
        assert watcher.find_active_session() is None

    def test_find_active_session(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """The most recently modified file wins."""
        old = write_jsonl(project_dir / "old.jsonl", [assistant_record()])
        new = write_jsonl(project_dir / "new.jsonl", [assistant_record()])
        os.utime(old, (1_000_000, 1_000_000))
        os.utime(new, (2_000_000, 2_000_000))

        active = watcher.find_active_session()
        assert active is not None
        assert active.session_id == "new"
        assert active.file_path == new

    def test_empty_file_scenario(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """An empty session found, tailed, then written to."""
        path = project_dir / "a.jsonl"
        path.touch()

        active = watcher.find_active_session()
        assert active is not None
        assert active.session_id == "a"

        watcher.watch_session(active.session_id, active.file_path)
        append_jsonl(path, [user_record("hi"), assistant_record(100, 200)])
        watcher.handle_file_change("a", path)

        data = watcher.get_session_data("a")
        assert data is not None
        assert data.total_tokens == 300
        assert data.turns == 1


class TestDirectoryWatch:
    """Tests for the projects directory watch."""

    def test_start_is_idempotent(
        self,
        watcher: SessionWatcher,
        factory: RecordingFactory,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Starting twice creates one watch and announces it once."""
        watcher.start_directory_watch()
        watcher.start_directory_watch()

        assert len(factory.created) == 1
        assert watcher.is_directory_watching is True
        assert kinds(recorded) == [EventKind.DIRECTORY_WATCH_STARTED]

    def test_add_change_unlink(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """File lifecycle maps to added, updated and removed events."""
        watcher.start_directory_watch()
        recorded.clear()

        path = write_jsonl(project_dir / "s1.jsonl", [user_record()])
        watcher.process_events()
        assert kinds(recorded) == [EventKind.SESSION_ADDED]
        assert recorded[0][1] == SessionPathEvent(session_id="s1", file_path=path)
        assert path in watcher.get_all_jsonl_files()

        append_jsonl(path, [assistant_record()])
        watcher.process_events()
        assert kinds(recorded)[-1] is EventKind.SESSION_UPDATED

        path.unlink()
        watcher.process_events()
        assert kinds(recorded)[-1] is EventKind.SESSION_REMOVED
        assert path not in watcher.get_all_jsonl_files()

    def test_ignores_other_files(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Non-session files produce no events."""
        watcher.start_directory_watch()
        recorded.clear()

        (project_dir / "notes.txt").write_text("x", encoding="utf-8")
        watcher.process_events()

        assert recorded == []

    def test_root_created_later(self, tmp_path: Path, clock: ManualClock) -> None:
        """Files appear once the missing root is created."""
        root = tmp_path / "later"
        watcher = SessionWatcher(Config(projects_dir=root), watch_factory=RecordingFactory(), clock=clock)
        added: list[SessionPathEvent] = []
        watcher.events.subscribe(EventKind.SESSION_ADDED, added.append)

        watcher.start_directory_watch()
        write_jsonl(root / "proj" / "x.jsonl", [user_record()])
        watcher.process_events()

        assert [event.session_id for event in added] == ["x"]
        assert watcher.get_all_jsonl_files() == [root / "proj" / "x.jsonl"]


class TestWatchSession:
    """Tests for SessionWatcher.watch_session."""

    def test_initial_parse(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Existing content is parsed once and announced after the start event."""
        path = write_jsonl(project_dir / "s1.jsonl", [user_record("go"), assistant_record(100, 200)])
        watcher.watch_session("s1", path)

        assert kinds(recorded) == [EventKind.SESSION_STARTED, EventKind.SESSION_DATA]
        assert recorded[0][1] == SessionLifecycleEvent(session_id="s1", file_path=path)
        data: SessionAggregate = recorded[1][1]
        assert data.total_tokens == 300
        assert data.latest_prompt == "go"

        state = watcher.get_watch_state("s1")
        assert state is not None
        assert state.byte_offset == path.stat().st_size
        assert watcher.watched_sessions == ["s1"]

    def test_watch_twice(self, watcher: SessionWatcher, factory: RecordingFactory, project_dir: Path) -> None:
        """A second call for the same session does not add a watch."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record()])
        watcher.watch_session("s1", path)
        watcher.watch_session("s1", path)

        assert len(factory.created) == 1
        assert watcher.get_memory_stats().watched_files == 1

    def test_missing_file(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A missing file is reported as an error, not raised."""
        watcher.watch_session("gone", project_dir / "gone.jsonl")

        assert kinds(recorded) == [EventKind.ERROR]
        error: ErrorEvent = recorded[0][1]
        assert error.session_id == "gone"
        assert isinstance(error.error, FileNotFoundError)
        assert watcher.watched_sessions == []

    def test_emitted_data_is_a_copy(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """Mutating an emitted aggregate does not touch the watcher's state."""
        received: list[SessionAggregate] = []
        watcher.events.subscribe(EventKind.SESSION_DATA, received.append)
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record(100, 200)])
        watcher.watch_session("s1", path)

        received[0].total_input_tokens = 123_456

        data = watcher.get_session_data("s1")
        assert data is not None
        assert data.total_input_tokens == 100


class TestReadExistingData:
    """Tests for SessionWatcher.read_existing_data."""

    def test_replaces_aggregate(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """A full parse replaces instead of merging."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record(100, 200)])
        watcher.read_existing_data("s1", path)
        data = watcher.read_existing_data("s1", path)

        assert data is not None
        assert data.total_tokens == 300

    def test_missing_file(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A missing file yields an error event and None."""
        assert watcher.read_existing_data("x", project_dir / "x.jsonl") is None
        assert kinds(recorded) == [EventKind.ERROR]
        assert isinstance(recorded[0][1].error, FileNotFoundError)

    def test_untracked_session_not_kept(self, watcher: SessionWatcher, project_dir: Path) -> None:
        """Reading a session that is not tailed returns data without holding on to it."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record(100, 200)])

        data = watcher.read_existing_data("s1", path)

        assert data is not None
        assert data.total_tokens == 300
        assert watcher.get_session_data("s1") is None
        assert watcher.get_memory_stats().active_sessions == 0


class TestHandleFileChange:
    """Tests for SessionWatcher.handle_file_change."""

    @pytest.fixture
    def session_path(self, watcher: SessionWatcher, project_dir: Path) -> Path:
        path = write_jsonl(project_dir / "s1.jsonl", [user_record("start"), assistant_record(100, 200)])
        watcher.watch_session("s1", path)
        return path

    def test_incremental_append(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Appended records are folded in and announced one message each."""
        append_jsonl(session_path, [user_record("more"), assistant_record(10, 20)])
        watcher.handle_file_change("s1", session_path)

        assert kinds(recorded) == [EventKind.SESSION_DATA, EventKind.MESSAGE, EventKind.MESSAGE]
        data: SessionAggregate = recorded[0][1]
        assert data.total_tokens == 330
        assert data.turns == 2
        assert data.latest_prompt == "more"

        messages: list[MessageEvent] = payloads(recorded, EventKind.MESSAGE)
        assert messages[0].data["message"]["content"] == "more"
        assert messages[1].session_data.total_tokens == 330

    def test_message_snapshots_follow_each_record(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Each message carries the totals as they stood after its own record."""
        append_jsonl(session_path, [assistant_record(10, 20), assistant_record(1, 2)])
        watcher.handle_file_change("s1", session_path)

        messages: list[MessageEvent] = payloads(recorded, EventKind.MESSAGE)
        assert [message.session_data.total_tokens for message in messages] == [330, 333]
        assert [message.session_data.turns for message in messages] == [2, 3]
        assert messages[0].session_data is not messages[1].session_data

    def test_offset_tracks_file_size(self, watcher: SessionWatcher, session_path: Path) -> None:
        """After many appends the offset is the file size and totals match a full parse."""
        for i in range(5):
            append_jsonl(session_path, [user_record(f"prompt {i}"), assistant_record(10 + i, 20 + i, cache_read=i)])
            watcher.handle_file_change("s1", session_path)

        state = watcher.get_watch_state("s1")
        assert state is not None
        assert state.byte_offset == session_path.stat().st_size

        live = watcher.get_session_data("s1")
        full = SessionCache().parse_and_cache_session(session_path)
        assert live is not None
        assert full is not None
        assert live.total_input_tokens == full.total_input_tokens
        assert live.total_output_tokens == full.total_output_tokens
        assert live.total_cache_tokens == full.total_cache_tokens
        assert live.turns == full.turns
        assert live.latest_prompt == full.latest_prompt
        assert live.total_cost == pytest.approx(full.total_cost)

    def test_partial_line_waits_for_newline(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """An unterminated line is read once it is complete."""
        size_before = session_path.stat().st_size
        append_raw(session_path, '{"message": {"role": "assistant", "usage": {"input_tokens": 7')
        watcher.handle_file_change("s1", session_path)

        state = watcher.get_watch_state("s1")
        assert state is not None
        assert state.byte_offset == size_before
        assert recorded == []

        append_raw(session_path, ', "output_tokens": 3}}}\n')
        watcher.handle_file_change("s1", session_path)

        data = watcher.get_session_data("s1")
        assert data is not None
        assert data.total_tokens == 310
        assert data.turns == 2
        assert len(payloads(recorded, EventKind.MESSAGE)) == 1

    def test_malformed_lines_skipped(self, watcher: SessionWatcher, session_path: Path) -> None:
        """Bad lines are skipped without stopping the batch."""
        append_raw(session_path, "{not json\nnull\n")
        append_jsonl(session_path, [assistant_record(1, 2)])
        watcher.handle_file_change("s1", session_path)

        data = watcher.get_session_data("s1")
        state = watcher.get_watch_state("s1")
        assert data is not None
        assert state is not None
        assert data.total_tokens == 303
        assert state.byte_offset == session_path.stat().st_size

    def test_shrunk_file_is_reparsed(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A smaller rewritten file replaces the totals instead of merging."""
        append_jsonl(session_path, [assistant_record(1000, 1000) for _ in range(5)])
        watcher.handle_file_change("s1", session_path)
        recorded.clear()

        write_jsonl(session_path, [user_record(MARKER), assistant_record(40, 2)])
        watcher.handle_file_change("s1", session_path)

        assert kinds(recorded) == [EventKind.SESSION_DATA, EventKind.COMPACT_DETECTED]
        data = watcher.get_session_data("s1")
        assert data is not None
        assert data.total_tokens == 42
        assert data.turns == 1
        assert data.is_compacted is True

        state = watcher.get_watch_state("s1")
        assert state is not None
        assert state.byte_offset == session_path.stat().st_size

    def test_large_jump_is_reparsed(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Growth beyond the size threshold triggers a full reparse."""
        append_jsonl(session_path, [assistant_record(5, 5, content="x" * 6000)])
        watcher.handle_file_change("s1", session_path)

        assert EventKind.COMPACT_DETECTED in kinds(recorded)
        data = watcher.get_session_data("s1")
        assert data is not None
        assert data.total_tokens == 310
        assert data.is_compacted is False

    def test_mtime_jump_is_reparsed(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A long quiet gap before a change triggers a full reparse."""
        append_jsonl(session_path, [assistant_record(1, 1)])
        later = session_path.stat().st_mtime + 600
        os.utime(session_path, (later, later))
        watcher.handle_file_change("s1", session_path)

        assert EventKind.COMPACT_DETECTED in kinds(recorded)
        data = watcher.get_session_data("s1")
        assert data is not None
        assert data.total_tokens == 302

    def test_unchanged_file(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """No new bytes means no events."""
        watcher.handle_file_change("s1", session_path)
        assert recorded == []

    def test_untracked_session(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Changes for sessions not being tailed are ignored."""
        path = write_jsonl(project_dir / "other.jsonl", [assistant_record()])
        watcher.handle_file_change("other", path)
        assert recorded == []

    def test_deleted_file(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A vanished file is reported, then the session is torn down."""
        session_path.unlink()
        watcher.handle_file_change("s1", session_path)

        assert kinds(recorded) == [EventKind.ERROR, EventKind.SESSION_STOPPED]
        assert recorded[0][1].session_id == "s1"
        assert isinstance(recorded[0][1].error, FileNotFoundError)
        assert watcher.watched_sessions == []
        assert watcher.get_session_data("s1") is None

    def test_change_after_stop(
        self,
        watcher: SessionWatcher,
        session_path: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A late change for a stopped session is a silent no-op."""
        watcher.stop_watching("s1")
        recorded.clear()
        append_jsonl(session_path, [assistant_record()])

        watcher.handle_file_change("s1", session_path)
        assert recorded == []


class TestEventPump:
    """Tests for debounced processing through process_events."""

    def test_change_is_debounced(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        clock: ManualClock,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """A file change is handled once the file has been quiet long enough."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record(100, 200)])
        watcher.watch_session("s1", path)
        recorded.clear()

        append_jsonl(path, [assistant_record(1, 1)])
        assert watcher.process_events() == 1
        assert recorded == []

        clock.advance(0.1)
        watcher.process_events()
        assert recorded == []

        clock.advance(0.3)
        watcher.process_events()
        assert kinds(recorded) == [EventKind.SESSION_DATA, EventKind.MESSAGE]

    def test_burst_is_coalesced(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        clock: ManualClock,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Changes inside the debounce window produce one update."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record(100, 200)])
        watcher.watch_session("s1", path)
        recorded.clear()

        append_jsonl(path, [assistant_record(1, 1)])
        watcher.process_events()
        clock.advance(0.2)
        append_jsonl(path, [assistant_record(2, 2)])
        watcher.process_events()
        clock.advance(0.2)
        watcher.process_events()
        assert recorded == []

        clock.advance(0.2)
        watcher.process_events()
        assert kinds(recorded) == [EventKind.SESSION_DATA, EventKind.MESSAGE, EventKind.MESSAGE]
        assert recorded[0][1].total_tokens == 306


class TestStopping:
    """Tests for stop_watching and stop_all."""

    def test_stop_watching(
        self,
        watcher: SessionWatcher,
        factory: RecordingFactory,
        project_dir: Path,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Stopping drops all state for the session and closes its watch."""
        path = write_jsonl(project_dir / "s1.jsonl", [assistant_record()])
        watcher.watch_session("s1", path)
        recorded.clear()

        watcher.stop_watching("s1")

        assert kinds(recorded) == [EventKind.SESSION_STOPPED]
        assert watcher.get_session_data("s1") is None
        assert watcher.get_watch_state("s1") is None
        assert factory.created[0].is_running is False

    def test_removed_file_stops_session(
        self,
        watcher: SessionWatcher,
        factory: RecordingFactory,
        project_dir: Path,
        clock: ManualClock,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """Deleting a tailed file drops its aggregate, state and watches."""
        path = write_jsonl(project_dir / "a.jsonl", [assistant_record()])
        watcher.start_directory_watch()
        watcher.watch_session("a", path)
        recorded.clear()

        path.unlink()
        watcher.process_events()
        clock.advance(5.0)
        watcher.process_events()

        assert kinds(recorded) == [EventKind.SESSION_REMOVED, EventKind.SESSION_STOPPED]
        assert watcher.watched_sessions == []
        assert watcher.get_session_data("a") is None
        stats = watcher.get_memory_stats()
        assert stats.active_sessions == 0
        assert stats.watched_files == 0
        assert factory.created[1].is_running is False

    def test_removed_file_without_directory_watch(
        self,
        watcher: SessionWatcher,
        project_dir: Path,
        clock: ManualClock,
        recorded: list[tuple[EventKind, Any]],
    ) -> None:
        """The file's own watch also tears the session down once it settles."""
        path = write_jsonl(project_dir / "a.jsonl", [assistant_record()])
        watcher.watch_session("a", path)
        recorded.clear()

        path.unlink()
        watcher.process_events()
        clock.advance(0.5)
        watcher.process_events()

        assert kinds(recorded) == [EventKind.ERROR, EventKind.SESSION_STOPPED]
        assert watcher.watched_sessions == []
        assert watcher.get_memory_stats().active_sessions == 0

    def test_stop_unknown_session(self, watcher: SessionWatcher, recorded: list[tuple[EventKind, Any]]) -> None:
        """Stopping a session that is not tailed does nothing."""
        watcher.stop_watching("nope")
        assert recorded == []

    def test_stop_all(self, watcher: SessionWatcher, factory: RecordingFactory, project_dir: Path) -> None:
        """stop_all closes every watch and clears every map."""
        a = write_jsonl(project_dir / "a.jsonl", [assistant_record()])
        b = write_jsonl(project_dir / "b.jsonl", [assistant_record()])
        watcher.start_directory_watch()
        watcher.watch_session("a", a)
        watcher.watch_session("b", b)

        watcher.stop_all()

        stats = watcher.get_memory_stats()
        assert stats.active_sessions == 0
        assert stats.watched_files == 0
        assert stats.cached_files == 0
        assert stats.directory_watching is False
        assert all(not watch.is_running for watch in factory.created)


class TestProcessMessage:
    """Tests for process_message function."""

    @pytest.fixture
    def aggregate(self) -> SessionAggregate:
        return SessionAggregate(session_id="s", file_path=Path("/tmp/s.jsonl"))

    def test_ignores_non_records(self, aggregate: SessionAggregate) -> None:
        """Non-dict input is ignored."""
        process_message(aggregate, None)
        process_message(aggregate, "text")
        assert aggregate.message_count == 0

    def test_message_without_usage(self, aggregate: SessionAggregate) -> None:
        """A message without usage adds no tokens."""
        process_message(aggregate, {"message": {"role": "assistant", "content": "hi"}})
        assert aggregate.turns == 1
        assert aggregate.total_tokens == 0

    def test_invalid_token_values(self, aggregate: SessionAggregate) -> None:
        """Non-numeric token values count as zero."""
        process_message(aggregate, assistant_record("100", 20))
        assert aggregate.total_input_tokens == 0
        assert aggregate.total_output_tokens == 20

    def test_cache_keeps_latest_non_zero(self, aggregate: SessionAggregate) -> None:
        """Cache tokens track the latest non-zero report."""
        process_message(aggregate, assistant_record(cache_read=500))
        process_message(aggregate, assistant_record(cache_read=0))
        assert aggregate.total_cache_tokens == 500
        process_message(aggregate, assistant_record(cache_read=700))
        assert aggregate.total_cache_tokens == 700

    def test_latest_values(self, aggregate: SessionAggregate) -> None:
        """Model, prompt and timestamps follow the newest records."""
        process_message(aggregate, user_record("first", timestamp="2026-01-17T10:00:00Z"))
        process_message(aggregate, assistant_record(model="claude-opus-4-6", timestamp="2026-01-17T10:01:00Z"))
        process_message(aggregate, user_record([{"type": "text", "text": "second"}], timestamp="2026-01-17T10:02:00Z"))

        assert aggregate.model == "claude-opus-4-6"
        assert aggregate.latest_prompt == "second"
        assert aggregate.first_timestamp is not None
        assert aggregate.last_timestamp is not None
        assert aggregate.first_timestamp.minute == 0
        assert aggregate.last_timestamp.minute == 2

    def test_compaction_marker(self, aggregate: SessionAggregate) -> None:
        """A summary message sets the compacted flag."""
        process_message(aggregate, user_record(MARKER))
        assert aggregate.is_compacted is True
