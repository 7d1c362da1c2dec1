"""
Shared fixtures for retryable_operation engine tests.
"""
import asyncio

import pytest

from retryable_operation.errors import ClassifiedError
from retryable_operation.scheduler import ScheduledHandle, Scheduler
from retryable_operation.types import ErrorKind


class ManualScheduler(Scheduler):
    """Scheduler whose callbacks only run when a test fires them."""

    def __init__(self):
        self.scheduled = []
        self.delays = []
        self.cancelled = []
        self.closed = False

    def schedule(self, delay_seconds, callback):
        handle = ScheduledHandle(delay_seconds=delay_seconds)
        self.scheduled.append((handle, callback))
        self.delays.append(delay_seconds)
        return handle

    def cancel(self, handle):
        for index, (pending, _) in enumerate(self.scheduled):
            if pending is handle:
                del self.scheduled[index]
                handle.cancelled = True
                self.cancelled.append(handle)
                return True
        return False

    def close(self):
        self.scheduled.clear()
        self.closed = True

    @property
    def pending(self):
        return len(self.scheduled)

    async def fire_next(self):
        """Run the oldest pending callback to completion."""
        handle, callback = self.scheduled.pop(0)
        await callback()
        return handle

    async def run_all(self, limit=20):
        """Fire callbacks until none are pending. Returns how many ran."""
        fired = 0
        while self.scheduled and fired < limit:
            await self.fire_next()
            fired += 1
        return fired


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)
        await asyncio.sleep(0)


class FlakyOperation:
    """Coroutine callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


@pytest.fixture
def scheduler():
    """Manually driven scheduler."""
    return ManualScheduler()


@pytest.fixture
def recording_sleep():
    """Sleep that returns immediately and records delays."""
    return RecordingSleep()


@pytest.fixture
def flaky():
    """Factory for operations that fail a fixed number of times."""
    return FlakyOperation


@pytest.fixture
def network_error():
    """A retryable classified error."""
    return ClassifiedError(ErrorKind.NETWORK, "connection dropped")


@pytest.fixture
def validation_error():
    """A permanent classified error."""
    return ClassifiedError(ErrorKind.VALIDATION, "email is invalid")
