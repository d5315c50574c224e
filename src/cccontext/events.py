"""Typed event stream shared by the watcher and the sessions manager."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from cccontext.models import SessionAggregate

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Events published on an EventBus, with their payload types."""

    SESSION_ADDED = "session-added"  # SessionPathEvent
    SESSION_REMOVED = "session-removed"  # SessionPathEvent
    SESSION_UPDATED = "session-updated"  # SessionPathEvent
    SESSION_STARTED = "session-started"  # SessionLifecycleEvent
    SESSION_STOPPED = "session-stopped"  # SessionLifecycleEvent
    SESSION_DATA = "session-data"  # SessionAggregate
    MESSAGE = "message"  # MessageEvent
    COMPACT_DETECTED = "compact-detected"  # SessionPathEvent
    ERROR = "error"  # ErrorEvent
    DIRECTORY_WATCH_STARTED = "directory-watch-started"  # None
    SESSIONS_LOADED = "sessions-loaded"  # list[SessionAggregate]
    SESSIONS_UPDATED = "sessions-updated"  # list[SessionAggregate]


@dataclass(frozen=True)
class SessionPathEvent:
    """A session file identified by id and path."""

    session_id: str
    file_path: Path


@dataclass(frozen=True)
class SessionLifecycleEvent:
    """Explicit start or stop of a session tail."""

    session_id: str
    file_path: Path | None = None


@dataclass(frozen=True)
class MessageEvent:
    """A newly appended record with the aggregate it produced."""

    session_id: str
    data: dict[str, Any]
    session_data: SessionAggregate


@dataclass(frozen=True)
class ErrorEvent:
    """A recoverable failure scoped to one session."""

    session_id: str
    error: Exception


Handler = Callable[[Any], None]


class EventBus:
    """Subscription registry with one-producer, many-consumer fan-out.

    Handlers run synchronously in subscription order on the emitting
    thread. A handler that raises is logged and skipped; the remaining
    handlers still receive the event.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[Handler]] = {}

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        """Register a handler for one event kind.

        Returns:
            A callable that removes the subscription.
        """
        self._handlers.setdefault(kind, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, kind: EventKind, payload: Any = None) -> None:
        """Deliver a payload to every handler subscribed to kind."""
        for handler in list(self._handlers.get(kind, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", kind.value)

    def subscriber_count(self, kind: EventKind | None = None) -> int:
        """Count handlers for one kind, or for all kinds."""
        if kind is not None:
            return len(self._handlers.get(kind, []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def clear(self) -> None:
        """Remove every subscription."""
        self._handlers.clear()
