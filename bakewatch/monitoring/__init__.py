"""Monitoring module for filesystem events."""

from .event_source import (
    BufferingEventHandler,
    DirectoryEventSource,
    EventKind,
    RawEvent,
    is_hidden,
)
from .scheduler import (
    DebounceScheduler,
    RefreshTask,
    RefreshStatus,
    SchedulerStats,
)
from .watcher import (
    WatcherService,
    WatcherListener,
    WatchRoot,
)

__all__ = [
    "BufferingEventHandler",
    "DirectoryEventSource",
    "EventKind",
    "RawEvent",
    "is_hidden",
    "DebounceScheduler",
    "RefreshTask",
    "RefreshStatus",
    "SchedulerStats",
    "WatcherService",
    "WatcherListener",
    "WatchRoot",
]
