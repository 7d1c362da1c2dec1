"""
Timer/scheduler collaborator for delayed retries
"""
import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

ScheduledCallback = Callable[[], Awaitable[None]]

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class ScheduledHandle:
    """Handle returned by Scheduler.schedule"""

    delay_seconds: float
    """Requested delay"""

    id: int = field(default_factory=lambda: next(_handle_ids))
    """Unique handle ID"""

    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    """Pending loop timer; None once fired or cancelled"""

    task: Optional["asyncio.Task[None]"] = field(default=None, repr=False)
    """Task running the callback after the timer fired"""

    cancelled: bool = False

    @property
    def fired(self) -> bool:
        return self.task is not None


class Scheduler(ABC):
    """Schedules zero-argument coroutine callbacks after a delay"""

    @abstractmethod
    def schedule(self, delay_seconds: float, callback: ScheduledCallback) -> ScheduledHandle:
        """Run callback after delay_seconds"""
        pass

    @abstractmethod
    def cancel(self, handle: ScheduledHandle) -> bool:
        """Cancel a pending callback. Returns False if it already fired"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Cancel every pending callback"""
        pass

    @property
    @abstractmethod
    def pending(self) -> int:
        """Number of callbacks waiting for their timer"""
        pass


class AsyncioScheduler(Scheduler):
    """
    Scheduler backed by the running event loop's call_later.

    Callbacks that have started are never interrupted by cancel(); only
    timers that have not fired yet are cleared.
    """

    def __init__(self) -> None:
        self._handles: dict[int, ScheduledHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    def schedule(self, delay_seconds: float, callback: ScheduledCallback) -> ScheduledHandle:
        """
        Schedule a callback.

        Args:
            delay_seconds: Delay before the callback runs
            callback: Coroutine function to run

        Returns:
            Handle usable with cancel()

        Raises:
            RuntimeError: If the scheduler is closed or no loop is running
        """
        if self._closed:
            raise RuntimeError("Scheduler has been closed")

        loop = asyncio.get_running_loop()
        handle = ScheduledHandle(delay_seconds=max(0.0, delay_seconds))

        def fire() -> None:
            self._handles.pop(handle.id, None)
            handle.timer = None
            task = loop.create_task(callback())
            handle.task = task
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

        handle.timer = loop.call_later(handle.delay_seconds, fire)
        self._handles[handle.id] = handle
        logger.debug(f"AsyncioScheduler.schedule: handle {handle.id} in {handle.delay_seconds:.3f}s")
        return handle

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "AsyncioScheduler: scheduled callback failed",
                exc_info=task.exception(),
            )

    def cancel(self, handle: ScheduledHandle) -> bool:
        """Cancel a pending callback"""
        if handle.timer is None:
            return False
        handle.timer.cancel()
        handle.timer = None
        handle.cancelled = True
        self._handles.pop(handle.id, None)
        logger.debug(f"AsyncioScheduler.cancel: handle {handle.id} cancelled")
        return True

    def close(self) -> None:
        """Cancel all pending timers and refuse new ones"""
        for handle in list(self._handles.values()):
            self.cancel(handle)
        self._closed = True

    @property
    def pending(self) -> int:
        return len(self._handles)

    @property
    def running(self) -> int:
        """Number of fired callbacks still running"""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every fired callback has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
