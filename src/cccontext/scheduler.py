"""Clock abstraction and a pollable debouncer."""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic time in seconds."""

    def monotonic(self) -> float: ...


class SystemClock:
    """Clock backed by time.monotonic."""

    def monotonic(self) -> float:
        return time.monotonic()


class DebounceState(Enum):
    """States of a Debouncer."""

    IDLE = "idle"
    PENDING = "pending"
    FLUSHING = "flushing"


class Debouncer:
    """Coalesce bursts of triggers into one callback.

    IDLE --trigger--> PENDING(deadline) --poll after deadline--> FLUSHING --> IDLE

    Every trigger while PENDING pushes the deadline back. A trigger that
    arrives while FLUSHING re-arms the debouncer, so the change is picked up
    by the next flush rather than lost. Nothing runs on its own: the owner
    calls poll() from its event loop, which keeps the callback on the
    owner's thread.
    """

    def __init__(self, delay: float, callback: Callable[[], None], clock: Clock | None = None) -> None:
        self._delay = delay
        self._callback = callback
        self._clock = clock or SystemClock()
        self._state = DebounceState.IDLE
        self._deadline: float | None = None
        self._rearmed = False

    @property
    def state(self) -> DebounceState:
        return self._state

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def is_pending(self) -> bool:
        return self._state is DebounceState.PENDING

    def trigger(self) -> None:
        """Arm the debouncer, or push back its deadline."""
        if self._state is DebounceState.FLUSHING:
            self._rearmed = True
            return
        self._state = DebounceState.PENDING
        self._deadline = self._clock.monotonic() + self._delay

    def poll(self) -> bool:
        """Flush if the deadline has passed.

        Returns:
            True if the callback ran.
        """
        if self._state is not DebounceState.PENDING or self._deadline is None:
            return False
        if self._clock.monotonic() < self._deadline:
            return False
        self.flush()
        return True

    def flush(self) -> None:
        """Run the callback now if anything is pending."""
        if self._state is not DebounceState.PENDING:
            return
        self._state = DebounceState.FLUSHING
        self._deadline = None
        try:
            self._callback()
        finally:
            self._state = DebounceState.IDLE
            if self._rearmed:
                self._rearmed = False
                self.trigger()

    def cancel(self) -> None:
        """Drop any pending flush."""
        self._state = DebounceState.IDLE
        self._deadline = None
        self._rearmed = False
