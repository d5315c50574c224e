"""Filesystem watch backends.

Two interchangeable implementations of PathWatch are provided. The backend
is picked once, from configuration, and handed to the watcher as a factory.

- WatchdogPathWatch uses native notifications (inotify, FSEvents, ...).
  The observer thread only enqueues events; poll() drains them on the
  caller's thread.
- PollingPathWatch compares stat snapshots on every poll(). It needs no
  OS support and works on network filesystems.
"""

from __future__ import annotations

import logging
import os
import queue
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from cccontext.config import WatcherBackend
from cccontext.models import JSONL_SUFFIX

logger = logging.getLogger(__name__)


class FsEventType(StrEnum):
    """Kinds of filesystem change."""

    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


@dataclass(frozen=True)
class FsEvent:
    """One filesystem change."""

    event_type: FsEventType
    path: Path


def walk_files(root: Path, suffix: str = JSONL_SUFFIX) -> list[Path]:
    """Recursively collect files with a suffix under root.

    Symlinks are not followed. Directories that cannot be read are skipped
    and the walk continues with their siblings.

    Args:
        root: Directory to walk.
        suffix: File name suffix to match.

    Returns:
        Matching file paths.
    """
    found: list[Path] = []
    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.is_symlink():
                        continue
                    if entry.is_dir(follow_symlinks=False):
                        pending.append(Path(entry.path))
                    elif entry.is_file(follow_symlinks=False) and entry.name.endswith(suffix):
                        found.append(Path(entry.path))
        except OSError as e:
            logger.debug("Skipping unreadable directory %s: %s", directory, e)
    return found


class PathWatch(ABC):
    """Watch a directory tree or a single file for changes."""

    def __init__(self, path: Path, recursive: bool = True, suffix: str = JSONL_SUFFIX) -> None:
        self.path = path
        self.recursive = recursive
        self.suffix = suffix
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watches_single_file(self) -> bool:
        return self.path.suffix == self.suffix and not self.path.is_dir()

    def matches(self, path: Path) -> bool:
        """Whether a changed path is of interest to this watch."""
        if self.watches_single_file:
            return path == self.path
        return path.name.endswith(self.suffix)

    @abstractmethod
    def start(self) -> None:
        """Arm the watch. Changes before this call are not reported."""

    @abstractmethod
    def stop(self) -> None:
        """Disarm the watch and release its resources."""

    @abstractmethod
    def poll(self) -> list[FsEvent]:
        """Return the changes observed since the previous poll."""


Snapshot = dict[Path, tuple[int, int]]


class PollingPathWatch(PathWatch):
    """PathWatch that diffs stat snapshots."""

    def __init__(self, path: Path, recursive: bool = True, suffix: str = JSONL_SUFFIX) -> None:
        super().__init__(path, recursive, suffix)
        self._snapshot: Snapshot = {}

    def _scan(self) -> Snapshot:
        if self.watches_single_file:
            candidates = [self.path]
        elif self.recursive:
            candidates = walk_files(self.path, self.suffix)
        else:
            try:
                candidates = [p for p in self.path.iterdir() if self.matches(p)]
            except OSError:
                candidates = []

        snapshot: Snapshot = {}
        for candidate in candidates:
            try:
                stat = candidate.stat()
            except OSError:
                continue
            snapshot[candidate] = (stat.st_mtime_ns, stat.st_size)
        return snapshot

    def start(self) -> None:
        self._snapshot = self._scan()
        self._running = True

    def stop(self) -> None:
        self._running = False
        self._snapshot = {}

    def poll(self) -> list[FsEvent]:
        if not self._running:
            return []

        current = self._scan()
        events: list[FsEvent] = []
        for path, fingerprint in current.items():
            previous = self._snapshot.get(path)
            if previous is None:
                events.append(FsEvent(FsEventType.ADD, path))
            elif previous != fingerprint:
                events.append(FsEvent(FsEventType.CHANGE, path))
        for path in self._snapshot.keys() - current.keys():
            events.append(FsEvent(FsEventType.UNLINK, path))

        self._snapshot = current
        return events


class _QueueingHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into FsEvents on a queue."""

    def __init__(self, sink: Callable[[FsEvent], None], matches: Callable[[Path], bool]) -> None:
        super().__init__()
        self._sink = sink
        self._matches = matches

    def _put(self, event_type: FsEventType, raw_path: bytes | str) -> None:
        path = Path(os.fsdecode(raw_path))
        if self._matches(path):
            self._sink(FsEvent(event_type, path))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(FsEventType.ADD, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(FsEventType.CHANGE, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._put(FsEventType.UNLINK, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic replace (write temp file, rename over the log) ends here
        if not event.is_directory:
            self._put(FsEventType.UNLINK, event.src_path)
            self._put(FsEventType.ADD, event.dest_path)


class WatchdogPathWatch(PathWatch):
    """PathWatch backed by a watchdog Observer."""

    def __init__(self, path: Path, recursive: bool = True, suffix: str = JSONL_SUFFIX) -> None:
        super().__init__(path, recursive, suffix)
        self._queue: queue.SimpleQueue[FsEvent] = queue.SimpleQueue()
        self._observer: BaseObserver | None = None
        self._single_file = False

    def start(self) -> None:
        if self._running:
            return
        self._single_file = self.watches_single_file
        target = self.path.parent if self._single_file else self.path
        handler = _QueueingHandler(self._queue.put, self.matches)

        observer = Observer()
        observer.schedule(handler, str(target), recursive=self.recursive and not self._single_file)
        observer.daemon = True
        observer.start()
        self._observer = observer
        self._running = True

    def stop(self) -> None:
        self._running = False
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
        # Drop anything queued after the stop
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break

    def matches(self, path: Path) -> bool:
        if self._single_file:
            return path == self.path
        return path.name.endswith(self.suffix)

    def poll(self) -> list[FsEvent]:
        events: list[FsEvent] = []
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                break
            if self._running:
                events.append(self._normalize(event))
        return events

    def _normalize(self, event: FsEvent) -> FsEvent:
        # For a tailed file, a rename over it is just new content
        if self._single_file and event.event_type is FsEventType.ADD:
            return FsEvent(FsEventType.CHANGE, event.path)
        return event


PathWatchFactory = Callable[[Path, bool], PathWatch]


def create_path_watch(
    backend: WatcherBackend,
    path: Path,
    recursive: bool = True,
    suffix: str = JSONL_SUFFIX,
) -> PathWatch:
    """Build a PathWatch for the configured backend.

    Native notifications need an existing directory to attach to. When it
    is missing, a polling watch is returned instead so the directory is
    picked up once it appears.
    """
    if backend is WatcherBackend.WATCHDOG:
        target = path if path.is_dir() else path.parent
        if target.is_dir():
            return WatchdogPathWatch(path, recursive, suffix)
        logger.debug("%s does not exist yet, watching %s by polling", target, path)
    return PollingPathWatch(path, recursive, suffix)
