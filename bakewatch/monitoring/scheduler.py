"""
Debounce Scheduler
==================

Coalesces bursts of changes under one watch root into a single deferred
refresh. A single timer thread runs due refreshes one at a time.

Each root owns at most one recognised task at a time. The slot holding it
is the only state shared between the poller and the timer thread, and it
is guarded by a lock of its own.
"""

import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from bakewatch.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DELAY = 0.4

# How often an interruptible await checks its interrupt
AWAIT_SLICE = 0.05


class RefreshStatus(Enum):
    """Status of a refresh task."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELED = "canceled"


class RefreshTask:
    """One pending or running coalesced refresh for a watch root.

    Attributes:
        root: The watch root the refresh belongs to.
        listener: Listener whose ``on_refresh`` is invoked.
        deadline: ``time.monotonic()`` value at which the task is due.
        status: Current status.
    """

    def __init__(self, root, listener, deadline: float):
        self.root = root
        self.listener = listener
        self.deadline = deadline
        self.status = RefreshStatus.PENDING
        self._lock = threading.Lock()
        self._finished = threading.Event()

    def cancel(self) -> bool:
        """Prevent the task from running.

        Returns:
            True if the task was still pending and will never run.
        """
        with self._lock:
            if self.status is not RefreshStatus.PENDING:
                return False
            self.status = RefreshStatus.CANCELED
        self._finished.set()
        return True

    def claim(self) -> bool:
        """Move a pending task to running. False if it was canceled first."""
        with self._lock:
            if self.status is not RefreshStatus.PENDING:
                return False
            self.status = RefreshStatus.RUNNING
            return True

    def mark_done(self) -> None:
        with self._lock:
            self.status = RefreshStatus.DONE
        self._finished.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task is done or canceled.

        Returns:
            False if the timeout elapsed first.
        """
        return self._finished.wait(timeout)

    def __repr__(self) -> str:
        return f"RefreshTask(root={self.root!r}, status={self.status.value})"


class _TaskSlot:
    """Holds the task recognised as pending for one root."""

    def __init__(self):
        self._lock = threading.Lock()
        self._task: Optional[RefreshTask] = None

    def get(self) -> Optional[RefreshTask]:
        return self._task

    def put(self, task: RefreshTask) -> None:
        with self._lock:
            self._task = task

    def put_if_absent(self, task: RefreshTask) -> Optional[RefreshTask]:
        """Install ``task`` if the slot is empty; return the previous occupant."""
        with self._lock:
            if self._task is None:
                self._task = task
                return None
            return self._task

    def replace(self, expected: RefreshTask, task: RefreshTask) -> bool:
        with self._lock:
            if self._task is not expected:
                return False
            self._task = task
            return True

    def remove(self, expected: RefreshTask) -> bool:
        with self._lock:
            if self._task is not expected:
                return False
            self._task = None
            return True


@dataclass
class SchedulerStats:
    """Counters for the debounce scheduler."""

    scheduled: int = 0
    rescheduled: int = 0
    awaited: int = 0
    refreshed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict:
        """Convert stats to dictionary."""
        return {
            "scheduled": self.scheduled,
            "rescheduled": self.rescheduled,
            "awaited": self.awaited,
            "refreshed": self.refreshed,
            "failed": self.failed,
        }


class DebounceScheduler:
    """Delays and coalesces refreshes per watch root.

    Features:
    - One timer thread, started on first use
    - Cancel-and-reschedule to restart the quiet period
    - Blocking rendezvous with a refresh that already started
    - Synchronous shutdown
    """

    def __init__(self, delay: float = DEFAULT_DELAY, name: str = "WatcherTimer"):
        """Initialize the scheduler.

        Args:
            delay: Quiet period in seconds before a refresh fires.
            name: Name of the timer thread.
        """
        self.delay = delay
        self._name = name
        self._slots: Dict[object, _TaskSlot] = {}
        self._heap: List[Tuple[float, int, RefreshTask]] = []
        self._counter = itertools.count()
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = True

        self.stats = SchedulerStats()
        self._stats_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """False once ``shutdown()`` was called."""
        return self._running

    def pending(self, root) -> Optional[RefreshTask]:
        """Return the task currently recognised for ``root``, if any."""
        slot = self._slots.get(root)
        return slot.get() if slot is not None else None

    def force_queue(self, root, listener) -> Optional[RefreshTask]:
        """Notify the listener and schedule a refresh after an overflow.

        A pending refresh for the root is canceled and replaced, which
        restarts the quiet period. If that refresh is already running, the
        new one is scheduled in addition, so two refreshes fire back to back.

        Args:
            root: The watch root that overflowed.
            listener: Listener to notify and later refresh.

        Returns:
            The new task, or None after shutdown or if the root was
            discarded meanwhile.
        """
        if not self._running:
            return None

        try:
            listener.on_overflow_queued()
        except Exception:
            logger.exception(f"Error in overflow callback for {root}")

        task = self._new_task(root, listener)
        slot = self._slot(root)
        previous = slot.put_if_absent(task)
        if previous is None:
            logger.debug(f"Scheduled refresh for {root}")
        else:
            if previous.cancel():
                logger.debug(f"Canceled and rescheduled refresh for {root}")
            else:
                logger.debug(f"Additionally scheduled refresh for {root}")
            if not slot.replace(previous, task):
                # The running refresh already removed itself
                slot.put(task)

        if not self._still_owned(root, slot, task):
            return None
        self._schedule(task)
        with self._stats_lock:
            self.stats.scheduled += 1
        return task

    def requeue_or_skip(
        self, root, listener, interrupt: Optional[threading.Event] = None
    ) -> bool:
        """Restart the quiet period of a pending refresh.

        Args:
            root: The watch root an event arrived for.
            listener: Listener to refresh.
            interrupt: Once set, stops waiting for a running refresh.

        Returns:
            True if a pending refresh was rescheduled and the event is
            subsumed by it. False if no refresh is pending, or if one was
            already running; in that case this call blocks until it is done
            or ``interrupt`` is set.
        """
        if not self._running:
            return False

        slot = self._slots.get(root)
        task = slot.get() if slot is not None else None
        if task is None:
            return False

        if task.cancel():
            new_task = self._new_task(root, listener)
            if not slot.replace(task, new_task):
                slot.put(new_task)
            if not self._still_owned(root, slot, new_task):
                return True
            self._schedule(new_task)
            with self._stats_lock:
                self.stats.rescheduled += 1
            logger.debug(f"Requeued refresh for {root}")
            return True

        if threading.current_thread() is not self._thread:
            logger.debug(f"Awaiting refresh for {root}")
            if interrupt is None:
                task.wait()
            else:
                while not task.wait(AWAIT_SLICE):
                    if interrupt.is_set():
                        logger.debug(f"Stopped awaiting refresh for {root}")
                        return False
            logger.debug(f"Awaited refresh for {root}")
        with self._stats_lock:
            self.stats.awaited += 1
        return False

    def discard(self, root) -> None:
        """Forget ``root``, canceling its refresh unless already running."""
        slot = self._slots.pop(root, None)
        if slot is None:
            return
        task = slot.get()
        if task is not None and task.cancel():
            logger.debug(f"Canceled refresh for removed root {root}")

    def shutdown(self) -> None:
        """Stop scheduling and wait for a running refresh to finish.

        No refresh fires after this returns, unless called from a refresh
        callback itself.
        """
        with self._condition:
            self._running = False
            queued = [task for _, _, task in self._heap]
            self._heap.clear()
            self._condition.notify_all()
            thread = self._thread

        for task in queued:
            task.cancel()
        for slot in list(self._slots.values()):
            task = slot.get()
            if task is not None:
                task.cancel()

        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._slots.clear()
        logger.debug("Debounce scheduler shut down")

    def get_stats(self) -> SchedulerStats:
        """Get a copy of the current statistics."""
        with self._stats_lock:
            return SchedulerStats(**self.stats.to_dict())

    def _slot(self, root) -> _TaskSlot:
        slot = self._slots.get(root)
        if slot is None:
            slot = self._slots.setdefault(root, _TaskSlot())
        return slot

    def _still_owned(self, root, slot: _TaskSlot, task: RefreshTask) -> bool:
        # discard() may have dropped the slot after we fetched it. Either
        # it saw our task and canceled it, or we cancel it here.
        if self._slots.get(root) is slot:
            return True
        task.cancel()
        logger.debug(f"Dropped refresh for discarded root {root}")
        return False

    def _new_task(self, root, listener) -> RefreshTask:
        return RefreshTask(root, listener, time.monotonic() + self.delay)

    def _schedule(self, task: RefreshTask) -> None:
        with self._condition:
            if not self._running:
                task.cancel()
                return
            heapq.heappush(self._heap, (task.deadline, next(self._counter), task))
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name=self._name, daemon=True
                )
                self._thread.start()
            self._condition.notify()

    def _run(self) -> None:
        """Timer loop that runs due tasks one at a time."""
        while True:
            with self._condition:
                task = self._next_due()
            if task is None:
                return
            self._execute(task)

    def _next_due(self) -> Optional[RefreshTask]:
        # Called with the condition held; None once shut down
        while self._running:
            if not self._heap:
                self._condition.wait()
                continue
            deadline, _, task = self._heap[0]
            if task.status is not RefreshStatus.PENDING:
                heapq.heappop(self._heap)
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                heapq.heappop(self._heap)
                return task
            self._condition.wait(remaining)
        return None

    def _execute(self, task: RefreshTask) -> None:
        if not task.claim():
            return
        try:
            logger.debug(f"Refreshing {task.root}")
            task.listener.on_refresh()
            with self._stats_lock:
                self.stats.refreshed += 1
        except Exception:
            with self._stats_lock:
                self.stats.failed += 1
            logger.exception(f"Error in refresh callback for {task.root}")
        finally:
            slot = self._slots.get(task.root)
            if slot is not None:
                slot.remove(task)
            task.mark_done()
            logger.debug(f"Refreshed {task.root}")
