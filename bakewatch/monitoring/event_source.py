"""
Directory Event Source
======================

Wraps a watchdog observer for one directory tree and turns its callbacks
into a buffered, non-blocking stream of classified change events.

Watchdog invokes handlers on its own dispatch thread; handlers here only
append to a bounded buffer. Classification, filtering and registration of
new sub-directories happen in ``drain()`` on the caller's thread.
"""

import os
import stat
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath
from typing import Callable, Dict, List, Optional, Set, Tuple

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from bakewatch.utils.exceptions import (
    ErrorCode,
    EventSourceClosedError,
    WatchSetupError,
)
from bakewatch.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 512

_RELEVANT_TYPES = frozenset({
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
})


class EventKind(Enum):
    """Kind of a classified change event."""

    CREATED = "created"
    DELETED = "deleted"
    MODIFIED = "modified"
    OVERFLOW = "overflow"


_KIND_FOR_TYPE = {
    EVENT_TYPE_CREATED: EventKind.CREATED,
    EVENT_TYPE_DELETED: EventKind.DELETED,
    EVENT_TYPE_MODIFIED: EventKind.MODIFIED,
}


@dataclass(frozen=True)
class RawEvent:
    """A change under a watched root.

    Attributes:
        kind: What happened.
        path: Path relative to the watched root, empty for overflow.
    """

    kind: EventKind
    path: str = ""


def is_hidden(rel_path: str) -> bool:
    """Return True if any segment of the relative path starts with a dot."""
    return any(part.startswith('.') for part in PurePath(rel_path).parts)


def _is_directory(path: str) -> bool:
    # Does not follow symlinks; a vanished path is simply not a directory
    try:
        return stat.S_ISDIR(os.lstat(path).st_mode)
    except OSError:
        return False


class BufferingEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one registered directory to its source."""

    def __init__(self, source: "DirectoryEventSource", directory: str):
        super().__init__()
        self._source = source
        self.directory = directory

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _RELEVANT_TYPES:
            self._source._enqueue(self.directory, event)


class DirectoryEventSource:
    """Observes one directory subtree and yields classified change events.

    By default the root is scheduled once, recursively, and the watchdog
    backend follows new sub-directories itself. With ``native_subtree``
    disabled every directory is scheduled on its own and new
    sub-directories are registered as their create events are drained.
    """

    def __init__(
        self,
        root,
        recursive: bool = True,
        skip_hidden: bool = True,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        native_subtree: bool = True,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        """Initialize the event source.

        Args:
            root: Directory to watch.
            recursive: Whether to watch subdirectories.
            skip_hidden: Drop events for paths with a dot-prefixed segment.
            buffer_size: Raw events kept between two drains before overflow.
            native_subtree: Watch the whole subtree with one recursive
                registration. When False, every directory is registered
                individually; each registration costs the backend an OS
                handle, so this only suits small trees.
            observer_factory: Creates the watchdog observer.
        """
        self.root = os.path.realpath(os.fspath(root))
        self.recursive = recursive
        self.skip_hidden = skip_hidden
        self.buffer_size = max(1, int(buffer_size))
        self.native_subtree = native_subtree
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None

        # Sub-registration handle -> directory it covers
        self._directories: Dict[ObservedWatch, str] = {}
        self._registered: Set[str] = set()

        self._buffer: List[Tuple[str, FileSystemEvent]] = []
        self._overflowed = False
        self._closed = False
        self._exhausted = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        """True once closed or once the root itself went away."""
        return self._closed or self._exhausted

    @property
    def directories(self) -> List[str]:
        """Directories currently registered with the observer."""
        return sorted(self._registered)

    def register(self) -> "DirectoryEventSource":
        """Start observing the root.

        Returns:
            This event source.

        Raises:
            WatchSetupError: If the root is missing or cannot be observed.
        """
        if self._observer is not None:
            return self

        if not os.path.isdir(self.root):
            raise WatchSetupError(
                f"Watch root is not a directory: {self.root}",
                root=self.root,
                error_code=ErrorCode.WATCH_PATH_NOT_FOUND,
            )

        self._observer = self._observer_factory()
        try:
            self._observer.start()
            if not self.recursive:
                self._schedule(self.root, recursive=False)
            elif self.native_subtree:
                self._schedule(self.root, recursive=True)
            else:
                self._register_tree(self.root, strict=True)
        except OSError as e:
            self._release()
            raise WatchSetupError(
                f"Cannot watch {self.root}: {e}",
                root=self.root,
                cause=e,
            ) from e

        logger.debug(
            f"Registered {len(self._registered)} director"
            f"{'y' if len(self._registered) == 1 else 'ies'} under {self.root}"
        )
        return self

    def drain(self) -> List[RawEvent]:
        """Return all buffered events without blocking.

        An overflow, if one happened since the last drain, is reported
        first as a single ``OVERFLOW`` event.

        Raises:
            EventSourceClosedError: If the source was closed or its root
                was removed.
        """
        with self._lock:
            if self._closed or self._exhausted:
                raise EventSourceClosedError(
                    f"Event source for {self.root} is closed",
                    root=self.root,
                )
            pending, self._buffer = self._buffer, []
            overflowed, self._overflowed = self._overflowed, False

        events: List[RawEvent] = []
        if overflowed:
            events.append(RawEvent(EventKind.OVERFLOW))
            if self.recursive and not self.native_subtree:
                # Directories created while events were dropped
                self._register_tree(self.root)

        for directory, event in pending:
            events.extend(self._classify(directory, event))
        return events

    def close(self) -> None:
        """Release the observer. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._buffer.clear()
        self._release()
        logger.debug(f"Closed event source for {self.root}")

    def _enqueue(self, directory: str, event: FileSystemEvent) -> None:
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) >= self.buffer_size:
                self._overflowed = True
                return
            self._buffer.append((directory, event))

    def _classify(self, directory: str, event: FileSystemEvent) -> List[RawEvent]:
        src = os.fsdecode(event.src_path)

        if src == directory:
            # Event about a registered directory itself
            if event.event_type in (EVENT_TYPE_DELETED, EVENT_TYPE_MOVED):
                if directory == self.root:
                    logger.info(f"Watch root went away: {self.root}")
                    self._exhausted = True
                else:
                    self._unregister_tree(directory)
            return []

        if event.event_type == EVENT_TYPE_MOVED:
            dest = os.fsdecode(event.dest_path)
            events = self._classify_path(EventKind.DELETED, src, event.is_directory)
            events += self._classify_path(EventKind.CREATED, dest, event.is_directory)
            return events

        return self._classify_path(
            _KIND_FOR_TYPE[event.event_type], src, event.is_directory
        )

    def _classify_path(
        self, kind: EventKind, path: str, is_directory: bool
    ) -> List[RawEvent]:
        try:
            rel_path = os.path.relpath(path, self.root)
        except ValueError:
            # Different drive on Windows
            return []
        if rel_path == os.curdir or rel_path.split(os.sep)[0] == os.pardir:
            return []

        if self.skip_hidden and is_hidden(rel_path):
            return []

        if kind is EventKind.MODIFIED:
            if is_directory or _is_directory(path):
                logger.debug(f"Skipped modify event for directory: {rel_path}")
                return []
        elif kind is EventKind.CREATED:
            if (self.recursive and not self.native_subtree
                    and (is_directory or _is_directory(path))):
                self._register_tree(path)
        elif is_directory or path in self._registered:
            # Deleted directory: drop its sub-registrations
            self._unregister_tree(path)

        return [RawEvent(kind, rel_path)]

    def _schedule(self, directory: str, recursive: bool) -> None:
        observer = self._observer
        if observer is None:
            return
        handler = BufferingEventHandler(self, directory)
        watch = observer.schedule(handler, directory, recursive=recursive)
        self._directories[watch] = directory
        self._registered.add(directory)

    def _register_tree(self, top: str, strict: bool = False) -> None:
        """Schedule ``top`` and every directory below it not yet registered.

        With ``strict`` any error propagates; otherwise directories that
        vanish or cannot be read while walking are skipped.
        """
        def onerror(error: OSError) -> None:
            if strict:
                raise error
            logger.debug(f"Skipping unreadable directory: {error.filename}")

        for dirpath, dirnames, _ in os.walk(top, onerror=onerror):
            if self.skip_hidden:
                dirnames[:] = [d for d in dirnames if not d.startswith('.')]
            if dirpath in self._registered:
                continue
            try:
                self._schedule(dirpath, recursive=False)
            except OSError as e:
                if strict:
                    raise
                logger.debug(f"Could not register {dirpath}: {e}")

    def _unregister_tree(self, top: str) -> None:
        observer = self._observer
        prefix = top + os.sep
        for watch, directory in list(self._directories.items()):
            if directory != top and not directory.startswith(prefix):
                continue
            # close() may have cleared the map from another thread
            self._directories.pop(watch, None)
            self._registered.discard(directory)
            if observer is not None:
                try:
                    observer.unschedule(watch)
                except KeyError:
                    pass

    def _release(self) -> None:
        observer, self._observer = self._observer, None
        self._directories.clear()
        self._registered.clear()
        if observer is None:
            return
        observer.stop()
        if observer.is_alive() and observer is not threading.current_thread():
            observer.join()
