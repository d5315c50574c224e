"""Batch loading and live refresh of the session list."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from pathlib import Path

from cccontext.config import Config
from cccontext.events import EventBus, EventKind, SessionPathEvent
from cccontext.models import SessionAggregate
from cccontext.scheduler import Clock, Debouncer
from cccontext.session_cache import CacheStats, SessionCache
from cccontext.session_watcher import ActiveSession, SessionWatcher

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _sort_key(session: SessionAggregate) -> datetime:
    return session.last_modified or _EPOCH


class SessionsManager:
    """Keep a sorted list of every session under the projects directory.

    Directory changes are batched: added and updated files collect in a
    pending set and are reloaded together once batch_delay has passed
    without further changes. Removals republish the list immediately.
    Publishes SESSIONS_LOADED and SESSIONS_UPDATED on ``events``.
    """

    def __init__(
        self,
        config: Config | None = None,
        watcher: SessionWatcher | None = None,
        cache: SessionCache | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or Config()
        self.settings = self.config.sessions
        self.watcher = watcher or SessionWatcher(self.config, clock=clock)
        self.cache = cache or SessionCache(self.config.auto_compact, self.config.context_window_override)
        self.events = EventBus()

        self._pending: set[Path] = set()
        self._debouncer = Debouncer(self.settings.batch_delay, self._process_batch_update, clock)
        self._unsubscribers: list[Callable[[], None]] = []
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def pending_updates(self) -> set[Path]:
        return set(self._pending)

    def initialize(self) -> list[SessionAggregate]:
        """Wire watcher events, start the directory watch and load everything.

        Calling it again returns the current list without rewiring.
        """
        if self._initialized:
            return self.get_all_sessions()

        self._setup_file_watching_events()
        self.watcher.start_directory_watch()
        self._initialized = True
        return self.load_all_sessions()

    def _setup_file_watching_events(self) -> None:
        bus = self.watcher.events
        self._unsubscribers = [
            bus.subscribe(EventKind.SESSION_ADDED, self._on_session_added),
            bus.subscribe(EventKind.SESSION_UPDATED, self._on_session_updated),
            bus.subscribe(EventKind.SESSION_REMOVED, self._on_session_removed),
        ]

    def _on_session_added(self, event: SessionPathEvent) -> None:
        self._schedule_update(event.file_path)

    def _on_session_updated(self, event: SessionPathEvent) -> None:
        self.cache.clear_session(event.file_path)
        self._schedule_update(event.file_path)

    def _on_session_removed(self, event: SessionPathEvent) -> None:
        self.cache.clear_session(event.file_path)
        self._pending.discard(event.file_path)
        self._emit_sessions_update()

    def _schedule_update(self, file_path: Path) -> None:
        self._pending.add(file_path)
        self._debouncer.trigger()

    def _process_batch_update(self) -> None:
        paths = sorted(self._pending)
        self._pending.clear()
        logger.debug("Reloading %d changed sessions", len(paths))
        self._load_many(paths)
        self._emit_sessions_update()

    def _emit_sessions_update(self) -> None:
        self.events.emit(EventKind.SESSIONS_UPDATED, self.get_all_sessions())

    def load_single_session(self, file_path: Path) -> SessionAggregate | None:
        """Load one session through the cache. None if it cannot be read."""
        return self.cache.parse_and_cache_session(file_path)

    def _load_many(self, paths: list[Path]) -> list[SessionAggregate]:
        if not paths:
            return []

        sessions: list[SessionAggregate] = []
        workers = max(1, min(self.settings.max_workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.load_single_session, path): path for path in paths}
            for future, path in futures.items():
                try:
                    session = future.result()
                except Exception:
                    logger.exception("Failed to load session %s", path)
                    continue
                if session is not None:
                    sessions.append(session)
        return sessions

    def get_all_sessions(self) -> list[SessionAggregate]:
        """Load every session file, most recently modified first.

        Files that fail to load are left out of the list.
        """
        sessions = self._load_many(self.watcher.get_all_jsonl_files())
        sessions.sort(key=_sort_key, reverse=True)
        return sessions

    def load_all_sessions(self) -> list[SessionAggregate]:
        """Load every session and publish the list as SESSIONS_LOADED."""
        sessions = self.get_all_sessions()
        self.events.emit(EventKind.SESSIONS_LOADED, sessions)
        return sessions

    def get_active_session(self) -> ActiveSession | None:
        return self.watcher.find_active_session()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_cache_stats()

    def process_events(self) -> None:
        """Pump the watcher, then flush the batch if it has settled."""
        self.watcher.process_events()
        self._debouncer.poll()

    def destroy(self) -> None:
        """Cancel pending work, stop watching and drop all state."""
        self._debouncer.cancel()
        self._pending.clear()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.watcher.stop_all()
        self.cache.clear_all()
        self.events.clear()
        self._initialized = False
