"""
Filesystem Watcher
==================

Owns the set of watched directory trees and runs the polling loop that
drains their event sources and routes each change to its listener.

Changes are delivered one by one while things are quiet. Once an overflow
was seen for a root, further changes are folded into a single delayed
refresh until the root settles.
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from bakewatch.monitoring.event_source import (
    DEFAULT_BUFFER_SIZE,
    DirectoryEventSource,
    EventKind,
    RawEvent,
)
from bakewatch.monitoring.scheduler import DEFAULT_DELAY, DebounceScheduler
from bakewatch.utils.exceptions import EventSourceClosedError, WatchSetupError
from bakewatch.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


class WatcherListener:
    """Receives change notifications for one watched tree.

    All methods are no-ops; override the ones you need. Callbacks run on
    the poller thread, except ``on_refresh`` which runs on the timer thread.
    """

    def on_overflow_queued(self) -> None:
        """Events were dropped and a refresh has been queued."""

    def on_refresh(self) -> None:
        """Anything under the root may have changed."""

    def on_created(self, rel_path: str) -> None:
        """A file or directory was created."""

    def on_deleted(self, rel_path: str) -> None:
        """A file or directory was deleted."""

    def on_modified(self, rel_path: str) -> None:
        """A file was modified."""


@dataclass(eq=False)
class WatchRoot:
    """A registered directory tree and the listener it reports to.

    Returned by ``WatcherService.add_watch`` as the handle for removal.
    """

    path: Path
    listener: WatcherListener
    source: DirectoryEventSource = field(repr=False)
    recursive: bool = True
    skip_hidden: bool = True


class WatcherService:
    """Main watcher service that monitors directory trees.

    Manages the event sources, the polling thread and the debounce
    scheduler, and handles starting/stopping the service.
    """

    def __init__(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        debounce_seconds: float = DEFAULT_DELAY,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        source_factory: Callable[..., DirectoryEventSource] = DirectoryEventSource,
    ):
        """Initialize the watcher service.

        Args:
            poll_interval: Seconds between two poller ticks.
            debounce_seconds: Quiet period before a coalesced refresh fires.
            buffer_size: Raw events buffered per root before overflowing.
            source_factory: Creates the event source for a root.
        """
        self.poll_interval = poll_interval
        self.buffer_size = buffer_size
        self.scheduler = DebounceScheduler(debounce_seconds)
        self._source_factory = source_factory

        # Replaced, never mutated, so a tick can iterate its own snapshot
        self._roots: List[WatchRoot] = []
        self._roots_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._stopped = False

    @classmethod
    def from_config(cls, config, **kwargs) -> "WatcherService":
        """Create a service from a ``WatcherConfig``."""
        return cls(
            poll_interval=config.poll_interval,
            debounce_seconds=config.debounce_seconds,
            buffer_size=config.buffer_size,
            **kwargs
        )

    @property
    def is_running(self) -> bool:
        """Check if the poller is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopped(self) -> bool:
        """True once ``stop()`` was called."""
        return self._stopped

    @property
    def watches(self) -> List[WatchRoot]:
        """Currently registered roots."""
        return list(self._roots)

    def add_watch(
        self,
        root_path,
        listener: WatcherListener,
        recursive: bool = True,
        skip_hidden: bool = True,
    ) -> WatchRoot:
        """Start watching a directory tree.

        Args:
            root_path: Directory to watch.
            listener: Receives the changes.
            recursive: Whether to watch subdirectories.
            skip_hidden: Ignore paths with a dot-prefixed segment.

        Returns:
            Handle to pass to ``remove_watch``.

        Raises:
            WatchSetupError: If the directory cannot be watched or the
                service was stopped.
        """
        if self._stopped:
            raise WatchSetupError(
                "Watcher service has been stopped", root=str(root_path)
            )

        source = self._source_factory(
            root_path,
            recursive=recursive,
            skip_hidden=skip_hidden,
            buffer_size=self.buffer_size,
        )
        source.register()

        handle = WatchRoot(
            path=Path(source.root),
            listener=listener,
            source=source,
            recursive=recursive,
            skip_hidden=skip_hidden,
        )
        with self._roots_lock:
            self._roots = self._roots + [handle]

        if self._stopped:
            # stop() ran while we were registering
            self._discard(handle)
            raise WatchSetupError(
                "Watcher service has been stopped", root=str(root_path)
            )

        logger.info(f"Watching directory: {handle.path}")
        return handle

    def remove_watch(self, handle: WatchRoot) -> None:
        """Stop watching a tree. Unknown handles are ignored."""
        if self._discard(handle):
            logger.info(f"Stopped watching directory: {handle.path}")

    def start(self) -> None:
        """Start the polling thread."""
        if self._stopped:
            raise RuntimeError("Watcher service cannot be restarted")
        if self._thread is not None:
            logger.warning("Watcher service already running")
            return

        self._thread = threading.Thread(
            target=self._poll_loop, daemon=True, name="WatcherService"
        )
        self._thread.start()
        logger.info(
            f"Watcher service started, monitoring {len(self._roots)} directories"
        )

    def stop(self) -> None:
        """Stop polling, release every root and wait for running refreshes.

        Safe to call more than once.
        """
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

        with self._roots_lock:
            roots, self._roots = self._roots, []
        for root in roots:
            root.source.close()

        self.scheduler.shutdown()
        logger.info("Watcher service stopped")

    def process_events(self) -> None:
        """Run one poll tick over every registered root."""
        for root in self._roots:
            if self._stop_event.is_set():
                return
            try:
                events = root.source.drain()
            except EventSourceClosedError:
                if root not in self._roots:
                    # Removed by remove_watch during this tick
                    continue
                logger.warning(
                    f"Watch on {root.path} closed, no further events",
                    extra={"root": root.path},
                )
                self._discard(root)
                continue

            for event in events:
                if self._stop_event.is_set():
                    return
                self._route(root, event)

    def _poll_loop(self) -> None:
        """Main loop; sleeps are cut short by ``stop()``."""
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.process_events()
            except Exception:
                logger.exception("Error in watcher poll loop")

    def _route(self, root: WatchRoot, event: RawEvent) -> None:
        if event.kind is EventKind.OVERFLOW:
            logger.debug(f"Event overflow under {root.path}")
            self.scheduler.force_queue(root, root.listener)
            if root not in self._roots:
                # Removed while the refresh was being queued
                self.scheduler.discard(root)
            return

        # The await is cut short by stop(), which may run inside on_refresh
        if self.scheduler.requeue_or_skip(
            root, root.listener, interrupt=self._stop_event
        ):
            return
        if self._stop_event.is_set():
            return

        callback = {
            EventKind.CREATED: root.listener.on_created,
            EventKind.DELETED: root.listener.on_deleted,
            EventKind.MODIFIED: root.listener.on_modified,
        }[event.kind]
        try:
            callback(event.path)
        except Exception:
            logger.exception(
                f"Error in {event.kind.value} callback for {event.path}",
                extra={"root": root.path},
            )

    def _discard(self, handle: WatchRoot) -> bool:
        with self._roots_lock:
            if handle not in self._roots:
                return False
            self._roots = [root for root in self._roots if root is not handle]
        handle.source.close()
        self.scheduler.discard(handle)
        return True
