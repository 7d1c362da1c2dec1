"""
Tests for RetryableOperation.

Test coverage includes:
- State transition testing: idle, running, retrying, succeeded, failed
- Retry bounds: automatic retries chained up to max_retries
- Manual retry and reset
- Supersession of in-flight executions
- Cancellation
- Event emission
- Integration with the asyncio scheduler
"""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from retryable_operation.config import DEFAULT_RETRY_CONFIG
from retryable_operation.errors import ClassifiedError
from retryable_operation.operation import (
    CancellationToken,
    RetryableOperation,
    create_retryable_operation,
)
from retryable_operation.types import ErrorKind, OperationState, OperationStatus, RetryConfig


async def wait_for_status(op, status, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while op.state.status != status:
        if loop.time() > deadline:
            raise AssertionError(f"status stayed {op.state.status}, expected {status}")
        await asyncio.sleep(0.005)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_tokens_are_unique(self):
        """Should assign a distinct id to each token."""
        assert CancellationToken().id != CancellationToken().id

    def test_cancel(self):
        """Should report cancellation."""
        token = CancellationToken()
        assert token.cancelled is False
        token.cancel()
        assert token.cancelled is True


class TestRetryableOperation:
    """Tests for RetryableOperation class."""

    class TestConstructor:
        """Tests for constructor."""

        def test_initial_state(self, scheduler, flaky):
            """Should start idle with no data."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)

            assert op.state == OperationState()
            assert op.data is None
            assert op.has_pending_retry is False
            assert op.current_token is None

        def test_uses_default_config(self, scheduler, flaky):
            """Should use the default config when none is given."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)
            assert op.config is DEFAULT_RETRY_CONFIG

        def test_name_defaults_to_function_name(self, scheduler):
            """Should name the engine after the operation."""

            async def load_users():
                return []

            assert RetryableOperation(load_users, scheduler=scheduler).name == "load_users"

        def test_factory(self, scheduler, flaky):
            """Should create an operation through the factory."""
            op = create_retryable_operation(flaky(0), RetryConfig(max_retries=1), scheduler=scheduler)
            assert op.config.max_retries == 1

    class TestExecute:
        """Tests for execute method."""

        @pytest.mark.asyncio
        async def test_success(self, scheduler, flaky):
            """Should store the result and succeed."""
            operation = flaky(0, result={"id": 1})
            op = RetryableOperation(operation, scheduler=scheduler)

            result = await op.execute()

            assert result == {"id": 1}
            assert op.data == {"id": 1}
            assert op.state.status == OperationStatus.SUCCEEDED
            assert op.state.attempt_count == 0
            assert op.state.last_error is None
            assert op.state.can_retry is False
            assert op.state.last_attempt_at is not None
            assert operation.calls == 1

        @pytest.mark.asyncio
        async def test_retryable_failure_schedules_retry(self, scheduler, flaky):
            """Should schedule a retry after a transient failure."""
            op = RetryableOperation(flaky(5), scheduler=scheduler)

            result = await op.execute()

            assert result is None
            assert op.state.status == OperationStatus.RETRYING
            assert op.state.is_retrying is True
            assert op.state.can_retry is True
            assert op.state.attempt_count == 0
            assert op.state.last_error.kind == ErrorKind.NETWORK
            assert op.has_pending_retry is True
            assert scheduler.pending == 1
            assert 1.0 <= scheduler.delays[0] <= 1.1

        @pytest.mark.asyncio
        async def test_exhausts_after_max_retries(self, scheduler, flaky):
            """Should invoke the operation 1 + max_retries times, then fail."""
            operation = flaky(100)
            op = RetryableOperation(operation, RetryConfig(max_retries=3), scheduler=scheduler)

            await op.execute()
            fired = await scheduler.run_all()

            assert fired == 3
            assert operation.calls == 4
            assert op.state.status == OperationStatus.FAILED
            assert op.state.attempt_count == 3
            assert op.state.can_retry is False
            assert op.state.last_error.kind == ErrorKind.NETWORK
            assert op.has_pending_retry is False

        @pytest.mark.asyncio
        async def test_retry_delays_grow_exponentially(self, scheduler, flaky):
            """Should back off exponentially between automatic retries."""
            op = RetryableOperation(flaky(100), RetryConfig(max_retries=3), scheduler=scheduler)

            await op.execute()
            await scheduler.run_all()

            first, second, third = scheduler.delays
            assert 1.0 <= first <= 1.1
            assert 2.0 <= second <= 2.2
            assert 4.0 <= third <= 4.4

        @pytest.mark.asyncio
        async def test_attempt_count_never_exceeds_max_retries(self, scheduler, flaky):
            """Should keep attempt_count within max_retries at every transition."""
            op = RetryableOperation(flaky(100), RetryConfig(max_retries=2), scheduler=scheduler)
            counts = []
            op.on(lambda event: counts.append(event.state.attempt_count))

            await op.execute()
            await scheduler.run_all()

            assert max(counts) == 2

        @pytest.mark.asyncio
        async def test_success_on_second_attempt(self, scheduler, flaky):
            """Should succeed after one automatic retry."""
            operation = flaky(1, result="users")
            op = RetryableOperation(operation, scheduler=scheduler)

            await op.execute()
            await scheduler.fire_next()

            assert operation.calls == 2
            assert op.data == "users"
            assert op.state.status == OperationStatus.SUCCEEDED
            assert op.state.attempt_count == 0
            assert op.state.last_error is None

        @pytest.mark.asyncio
        async def test_permanent_failure_is_not_retried(self, scheduler):
            """Should not retry an UNKNOWN failure."""
            calls = 0

            async def operation():
                nonlocal calls
                calls += 1
                raise ValueError("bad payload")

            op = RetryableOperation(operation, scheduler=scheduler)
            await op.execute()

            assert calls == 1
            assert op.state.status == OperationStatus.FAILED
            assert op.state.can_retry is False
            assert op.state.last_error.kind == ErrorKind.UNKNOWN
            assert scheduler.pending == 0

        @pytest.mark.asyncio
        async def test_zero_max_retries(self, scheduler, flaky):
            """Should never retry when max_retries is zero."""
            operation = flaky(5)
            op = RetryableOperation(operation, RetryConfig(max_retries=0), scheduler=scheduler)

            await op.execute()

            assert operation.calls == 1
            assert op.state.status == OperationStatus.FAILED
            assert op.state.can_retry is False

        @pytest.mark.asyncio
        async def test_predicate_receives_attempt_count(self, scheduler, flaky):
            """Should pass the error and retries made so far to the predicate."""
            seen = []

            def predicate(error, attempt):
                seen.append((error.kind, attempt))
                return attempt < 1

            op = RetryableOperation(
                flaky(100),
                RetryConfig(max_retries=5, retry_predicate=predicate),
                scheduler=scheduler,
            )
            await op.execute()
            await scheduler.run_all()

            assert seen == [(ErrorKind.NETWORK, 0), (ErrorKind.NETWORK, 1)]
            assert op.state.status == OperationStatus.FAILED

        @pytest.mark.asyncio
        async def test_predicate_exception_disables_retry(self, scheduler, flaky, caplog):
            """Should treat a failing predicate as not retryable."""

            def predicate(error, attempt):
                raise RuntimeError("predicate bug")

            op = RetryableOperation(
                flaky(5), RetryConfig(retry_predicate=predicate), scheduler=scheduler
            )

            with caplog.at_level(logging.ERROR, logger="retryable_operation.operation"):
                await op.execute()

            assert op.state.status == OperationStatus.FAILED
            assert op.state.can_retry is False
            assert any("retry predicate failed" in r.getMessage() for r in caplog.records)

        @pytest.mark.asyncio
        async def test_custom_classifier(self, scheduler):
            """Should use the supplied classifier."""

            async def operation():
                raise ValueError("quota")

            def classifier(raw):
                return ClassifiedError(ErrorKind.RATE_LIMIT, str(raw))

            op = RetryableOperation(operation, scheduler=scheduler, classifier=classifier)
            await op.execute()

            assert op.state.last_error.kind == ErrorKind.RATE_LIMIT
            assert op.state.status == OperationStatus.RETRYING

        @pytest.mark.asyncio
        async def test_failing_classifier_falls_back(self, scheduler, flaky):
            """Should fall back to the default classifier."""

            def classifier(raw):
                raise RuntimeError("classifier bug")

            op = RetryableOperation(flaky(5), scheduler=scheduler, classifier=classifier)
            await op.execute()

            assert op.state.last_error.kind == ErrorKind.NETWORK

        @pytest.mark.asyncio
        async def test_raised_classified_error_is_kept(self, scheduler, validation_error):
            """Should keep a ClassifiedError raised by the operation."""

            async def operation():
                raise validation_error

            op = RetryableOperation(operation, scheduler=scheduler)
            await op.execute()

            assert op.state.last_error is validation_error

        @pytest.mark.asyncio
        async def test_loading_while_running(self, scheduler):
            """Should report loading while the operation runs."""
            gate = asyncio.Event()

            async def operation():
                await gate.wait()
                return "done"

            op = RetryableOperation(operation, scheduler=scheduler)
            task = asyncio.create_task(op.execute())
            await asyncio.sleep(0)

            assert op.state.status == OperationStatus.RUNNING
            assert op.state.is_loading is True

            gate.set()
            assert await task == "done"
            assert op.state.is_loading is False

    class TestSupersession:
        """Tests for superseding in-flight executions."""

        @pytest.mark.asyncio
        async def test_newer_execute_wins(self, scheduler):
            """Should discard the result of an older execution."""
            gate = asyncio.Event()
            calls = 0

            async def operation():
                nonlocal calls
                calls += 1
                if calls == 1:
                    await gate.wait()
                    return "stale"
                return "fresh"

            op = RetryableOperation(operation, scheduler=scheduler)
            first = asyncio.create_task(op.execute())
            await asyncio.sleep(0)

            second = await op.execute()
            gate.set()
            first_result = await first

            assert second == "fresh"
            assert first_result is None
            assert op.data == "fresh"
            assert op.state.status == OperationStatus.SUCCEEDED

        @pytest.mark.asyncio
        async def test_stale_failure_is_discarded(self, scheduler):
            """Should not record or retry a failure from an older execution."""
            gate = asyncio.Event()
            calls = 0

            async def operation():
                nonlocal calls
                calls += 1
                if calls == 1:
                    await gate.wait()
                    raise ConnectionError("late failure")
                return "fresh"

            op = RetryableOperation(operation, scheduler=scheduler)
            first = asyncio.create_task(op.execute())
            await asyncio.sleep(0)

            await op.execute()
            gate.set()
            await first

            assert op.state.status == OperationStatus.SUCCEEDED
            assert op.state.last_error is None
            assert scheduler.pending == 0

        @pytest.mark.asyncio
        async def test_execute_cancels_pending_retry(self, scheduler, flaky):
            """Should cancel a pending automatic retry."""
            operation = flaky(1)
            op = RetryableOperation(operation, scheduler=scheduler)

            await op.execute()
            handle, callback = scheduler.scheduled[0]
            await op.execute()

            assert handle.cancelled is True
            assert scheduler.pending == 0
            assert op.state.status == OperationStatus.SUCCEEDED

            # A timer that fires late must not start another attempt
            await callback()
            assert operation.calls == 2

    class TestRetry:
        """Tests for manual retry."""

        @pytest.mark.asyncio
        async def test_noop_when_cannot_retry(self, scheduler, flaky):
            """Should do nothing when can_retry is False."""
            operation = flaky(0)
            op = RetryableOperation(operation, scheduler=scheduler)

            assert await op.retry() is None
            assert operation.calls == 0
            assert op.state.status == OperationStatus.IDLE

        @pytest.mark.asyncio
        async def test_manual_retry_replaces_pending_retry(self, scheduler, flaky):
            """Should cancel the automatic retry and run immediately."""
            operation = flaky(1, result="ok")
            op = RetryableOperation(operation, scheduler=scheduler)

            await op.execute()
            result = await op.retry()

            assert result == "ok"
            assert operation.calls == 2
            assert len(scheduler.cancelled) == 1
            assert scheduler.pending == 0

        @pytest.mark.asyncio
        async def test_failed_manual_retry_does_not_schedule(self, scheduler, flaky):
            """Should leave a failed manual retry for the caller to repeat."""
            operation = flaky(2, result="ok")
            op = RetryableOperation(operation, scheduler=scheduler)

            await op.execute()
            await op.retry()

            assert op.state.status == OperationStatus.FAILED
            assert op.state.attempt_count == 1
            assert op.state.can_retry is True
            assert scheduler.pending == 0

            assert await op.retry() == "ok"
            assert operation.calls == 3

        @pytest.mark.asyncio
        async def test_noop_after_exhaustion(self, scheduler, flaky):
            """Should refuse to retry past max_retries."""
            operation = flaky(100)
            op = RetryableOperation(operation, RetryConfig(max_retries=1), scheduler=scheduler)

            await op.execute()
            await scheduler.run_all()
            calls = operation.calls

            assert await op.retry() is None
            assert operation.calls == calls

    class TestReset:
        """Tests for reset method."""

        @pytest.mark.asyncio
        async def test_restores_initial_state(self, scheduler, flaky):
            """Should return to the exact initial state."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)
            await op.execute()

            op.reset()

            assert op.state == OperationState()
            assert op.data is None

        @pytest.mark.asyncio
        async def test_cancels_pending_retry(self, scheduler, flaky):
            """Should cancel a pending retry so it never fires."""
            operation = flaky(5)
            op = RetryableOperation(operation, scheduler=scheduler)
            await op.execute()
            _, callback = scheduler.scheduled[0]

            op.reset()
            await callback()

            assert scheduler.pending == 0
            assert operation.calls == 1
            assert op.state == OperationState()

        @pytest.mark.asyncio
        async def test_discards_in_flight_result(self, scheduler):
            """Should ignore the result of an execution started before reset."""
            gate = asyncio.Event()

            async def operation():
                await gate.wait()
                return "late"

            op = RetryableOperation(operation, scheduler=scheduler)
            task = asyncio.create_task(op.execute())
            await asyncio.sleep(0)

            op.reset()
            gate.set()

            assert await task is None
            assert op.data is None
            assert op.state == OperationState()

    class TestCancellation:
        """Tests for task cancellation."""

        @pytest.mark.asyncio
        async def test_cancelled_task_returns_to_idle(self, scheduler):
            """Should go idle and propagate CancelledError."""

            async def operation():
                await asyncio.Event().wait()

            op = RetryableOperation(operation, scheduler=scheduler)
            task = asyncio.create_task(op.execute())
            await asyncio.sleep(0)

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert op.state.status == OperationStatus.IDLE
            assert op.state.can_retry is False
            assert scheduler.pending == 0

        @pytest.mark.asyncio
        async def test_cancelled_retry_does_not_consume_attempt(self, scheduler):
            """Should restore the attempt count held before the cancelled attempt."""
            calls = 0

            async def operation():
                nonlocal calls
                calls += 1
                if calls == 1:
                    raise ConnectionError("connection dropped")
                await asyncio.Event().wait()

            op = RetryableOperation(operation, scheduler=scheduler)
            await op.execute()
            task = asyncio.create_task(op.retry())
            await asyncio.sleep(0)

            assert op.state.attempt_count == 1

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert op.state.status == OperationStatus.IDLE
            assert op.state.attempt_count == 0
            assert op.state.can_retry is False

    class TestEvents:
        """Tests for event emission."""

        @pytest.mark.asyncio
        async def test_emits_transition_events(self, scheduler, flaky):
            """Should emit an event for every transition."""
            op = RetryableOperation(flaky(1), scheduler=scheduler)
            events = []
            op.on(events.append)

            await op.execute()
            await scheduler.fire_next()

            assert [e.type for e in events] == [
                "attempt:start",
                "attempt:fail",
                "retry:scheduled",
                "attempt:start",
                "attempt:success",
            ]
            scheduled = events[2]
            assert scheduled.data["status"] == "retrying"
            assert scheduled.data["attempt"] == 0
            assert scheduled.data["delay_seconds"] == scheduler.delays[0]
            assert events[-1].state.status == OperationStatus.SUCCEEDED

        @pytest.mark.asyncio
        async def test_reset_event(self, scheduler, flaky):
            """Should emit state:reset."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)
            listener = MagicMock()
            op.on(listener)

            op.reset()

            event = listener.call_args[0][0]
            assert event.type == "state:reset"
            assert event.state == OperationState()

        @pytest.mark.asyncio
        async def test_unsubscribe(self, scheduler, flaky):
            """Should stop notifying a removed listener."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)
            listener = MagicMock()
            unsubscribe = op.on(listener)
            unsubscribe()

            await op.execute()

            listener.assert_not_called()

        @pytest.mark.asyncio
        async def test_listener_errors_are_isolated(self, scheduler, flaky):
            """Should keep running when a listener raises."""
            op = RetryableOperation(flaky(0), scheduler=scheduler)
            op.on(MagicMock(side_effect=RuntimeError("listener bug")))

            assert await op.execute() == "ok"
            assert op.state.status == OperationStatus.SUCCEEDED

    class TestClose:
        """Tests for aclose and async context manager."""

        @pytest.mark.asyncio
        async def test_execute_after_close_raises(self, flaky):
            """Should refuse to run after aclose."""
            op = RetryableOperation(flaky(0))
            await op.aclose()

            with pytest.raises(RuntimeError):
                await op.execute()

        @pytest.mark.asyncio
        async def test_does_not_close_injected_scheduler(self, scheduler, flaky):
            """Should leave a caller-owned scheduler open."""
            op = RetryableOperation(flaky(5), scheduler=scheduler)
            await op.execute()

            await op.aclose()

            assert scheduler.closed is False
            assert scheduler.pending == 0

        @pytest.mark.asyncio
        async def test_context_manager(self, flaky):
            """Should close on exit."""
            async with RetryableOperation(flaky(0)) as op:
                assert await op.execute() == "ok"

            with pytest.raises(RuntimeError):
                await op.execute()

    class TestAsyncioScheduler:
        """Tests with the real asyncio scheduler."""

        @pytest.mark.asyncio
        async def test_retries_until_success(self, flaky):
            """Should retry automatically after real delays."""
            operation = flaky(2, result="recovered")
            config = RetryConfig(initial_delay_seconds=0.01, max_delay_seconds=0.05, jitter_ratio=0.0)

            async with RetryableOperation(operation, config) as op:
                await op.execute()
                await wait_for_status(op, OperationStatus.SUCCEEDED)

                assert op.data == "recovered"
                assert operation.calls == 3

        @pytest.mark.asyncio
        async def test_exhausts_with_real_timers(self, flaky):
            """Should stop after max_retries with real delays."""
            operation = flaky(100)
            config = RetryConfig(
                max_retries=2, initial_delay_seconds=0.01, max_delay_seconds=0.05, jitter_ratio=0.0
            )

            async with RetryableOperation(operation, config) as op:
                await op.execute()
                await wait_for_status(op, OperationStatus.FAILED)

                assert operation.calls == 3
                assert op.state.attempt_count == 2
