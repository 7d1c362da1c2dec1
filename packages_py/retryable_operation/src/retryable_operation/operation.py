"""
Single-operation retry engine
"""
import asyncio
import itertools
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Generic, Optional

from .classifier import classify, is_retryable_kind, log_error
from .config import calculate_backoff_delay, default_retry_predicate, merge_config
from .errors import ClassifiedError
from .scheduler import AsyncioScheduler, ScheduledHandle, Scheduler
from .types import (
    EventType,
    OperationState,
    OperationStatus,
    RetryConfig,
    RetryEvent,
    RetryEventListener,
    RetryPredicate,
    T,
)

logger = logging.getLogger(__name__)

Classifier = Callable[[Any], ClassifiedError]

_token_ids = itertools.count(1)


class CancellationToken:
    """
    Identifies one execution of a RetryableOperation.

    Every execute/retry creates a fresh token and cancels the previous one.
    Results and scheduled retries carrying a cancelled token are discarded.
    """

    __slots__ = ("id", "_cancelled")

    def __init__(self) -> None:
        self.id = next(_token_ids)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        return f"CancellationToken(id={self.id}, cancelled={self._cancelled})"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RetryableOperation(Generic[T]):
    """
    Retryable Operation

    Wraps one async unit of work with:
    - Error classification into ErrorKind
    - Automatic retries with exponential backoff and jitter, bounded by max_retries
    - Manual retry and reset
    - Supersession: a newer execute() discards the outcome of older ones
    - Observable state snapshots and transition events
    """

    def __init__(
        self,
        operation: Callable[[], Awaitable[T]],
        config: Optional[RetryConfig] = None,
        *,
        scheduler: Optional[Scheduler] = None,
        classifier: Classifier = classify,
        name: Optional[str] = None,
    ) -> None:
        """
        Create a new RetryableOperation.

        Args:
            operation: Zero-argument coroutine function to run
            config: Retry configuration, immutable for the engine's lifetime
            scheduler: Timer collaborator for automatic retries
            classifier: Maps raw failures into ClassifiedError
            name: Label used in logs
        """
        self._operation = operation
        self._config = merge_config(config)
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncioScheduler()
        self._classifier = classifier
        self._name = name or getattr(operation, "__name__", "operation")
        self._listeners: list[RetryEventListener] = []

        self._state = OperationState()
        self._data: Optional[T] = None
        self._token: Optional[CancellationToken] = None
        self._pending_retry: Optional[ScheduledHandle] = None
        self._closed = False

    @property
    def state(self) -> OperationState:
        """Current state snapshot"""
        return self._state

    @property
    def data(self) -> Optional[T]:
        """Output of the last successful attempt"""
        return self._data

    @property
    def config(self) -> RetryConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._name

    @property
    def current_token(self) -> Optional[CancellationToken]:
        """Token of the execution whose outcome will be kept"""
        return self._token

    @property
    def has_pending_retry(self) -> bool:
        return self._pending_retry is not None

    def on(self, listener: RetryEventListener) -> Callable[[], None]:
        """
        Add an event listener.

        Args:
            listener: Called with a RetryEvent on every transition

        Returns:
            Function to remove the listener
        """
        self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: RetryEventListener) -> None:
        """Remove an event listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: EventType, **data: Any) -> None:
        event = RetryEvent(type=event_type, state=self._state, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"RetryableOperation._emit: listener failed on {event_type}")

    def _transition(
        self,
        event_type: EventType,
        data: Optional[dict[str, Any]] = None,
        **changes: Any,
    ) -> None:
        self._state = replace(self._state, **changes)
        logger.debug(
            f"RetryableOperation[{self._name}]: {event_type} -> {self._state.status.value} "
            f"(attempt_count={self._state.attempt_count}, can_retry={self._state.can_retry})"
        )
        self._emit(event_type, status=self._state.status.value, **(data or {}))

    async def execute(self) -> Optional[T]:
        """
        Run the operation, superseding any in-flight call or pending retry.

        Returns:
            The output on success, None on failure or when superseded

        Example:
            op = RetryableOperation(fetch_users, RetryConfig(max_retries=3))
            users = await op.execute()
            if users is None and op.state.can_retry:
                ...
        """
        return await self._run(retry_attempt=False, scheduled=False)

    async def retry(self) -> Optional[T]:
        """
        Manually retry after a failure.

        No-op returning None when can_retry is False. A manual retry never
        schedules a follow-up automatic retry.
        """
        if not self._state.can_retry:
            logger.debug(f"RetryableOperation.retry: {self._name} cannot retry, ignoring")
            return None
        return await self._run(retry_attempt=True, scheduled=False)

    def reset(self) -> None:
        """Cancel pending and in-flight work and return to IDLE."""
        self._cancel_pending_retry()
        self._invalidate_token()
        self._data = None
        self._state = OperationState()
        logger.debug(f"RetryableOperation.reset: {self._name} reset to idle")
        self._emit("state:reset", status=self._state.status.value)

    async def aclose(self) -> None:
        """Reset and release the scheduler if this engine created it."""
        if self._closed:
            return
        self.reset()
        if self._owns_scheduler:
            self._scheduler.close()
        self._listeners.clear()
        self._closed = True

    async def __aenter__(self) -> "RetryableOperation[T]":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

    def _invalidate_token(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def _cancel_pending_retry(self) -> None:
        handle = self._pending_retry
        if handle is None:
            return
        self._pending_retry = None
        self._scheduler.cancel(handle)
        logger.debug(f"RetryableOperation: {self._name} pending retry {handle.id} cancelled")

    def _is_current(self, token: CancellationToken) -> bool:
        return token is self._token and not token.cancelled

    def _allows_retry(self, error: ClassifiedError, attempt_count: int) -> bool:
        predicate = self._config.retry_predicate or default_retry_predicate
        try:
            allowed = bool(predicate(error, attempt_count))
        except Exception:
            logger.exception(f"RetryableOperation: retry predicate failed for {self._name}")
            allowed = False
        return allowed and attempt_count < self._config.max_retries

    def _classify(self, raw: Exception) -> ClassifiedError:
        try:
            return self._classifier(raw)
        except Exception:
            logger.exception(f"RetryableOperation: classifier failed for {self._name}")
            return classify(raw)

    async def _run(self, *, retry_attempt: bool, scheduled: bool) -> Optional[T]:
        if self._closed:
            raise RuntimeError("RetryableOperation has been closed")

        self._cancel_pending_retry()
        self._invalidate_token()
        token = CancellationToken()
        self._token = token

        previous_count = self._state.attempt_count
        attempt_count = previous_count + (1 if retry_attempt else 0)
        self._transition(
            "attempt:start",
            status=OperationStatus.RUNNING,
            attempt_count=attempt_count,
            last_error=None,
            can_retry=False,
            last_attempt_at=_now(),
        )

        try:
            result = await self._operation()
        except asyncio.CancelledError:
            if self._is_current(token):
                self._invalidate_token()
                # A cancelled attempt does not consume a retry
                self._transition(
                    "retry:cancelled",
                    status=OperationStatus.IDLE,
                    attempt_count=previous_count,
                    can_retry=False,
                )
            raise
        except Exception as exc:
            if not self._is_current(token):
                logger.debug(f"RetryableOperation: discarding stale failure of {self._name}")
                return None
            self._handle_failure(token, exc, attempt_count, schedule=not retry_attempt or scheduled)
            return None

        if not self._is_current(token):
            logger.debug(f"RetryableOperation: discarding stale result of {self._name}")
            return None

        self._data = result
        self._transition(
            "attempt:success",
            status=OperationStatus.SUCCEEDED,
            attempt_count=0,
            last_error=None,
            can_retry=False,
        )
        self._on_success(result)
        return result

    def _handle_failure(
        self,
        token: CancellationToken,
        exc: Exception,
        attempt_count: int,
        schedule: bool,
    ) -> None:
        error = self._classify(exc)
        can_retry = self._allows_retry(error, attempt_count)
        self._transition(
            "attempt:fail",
            status=OperationStatus.FAILED,
            last_error=error,
            can_retry=can_retry,
        )
        log_error(error, f"{self._name} (attempt {attempt_count + 1})")

        retry_scheduled = False
        if can_retry and schedule:
            self._schedule_retry(token, attempt_count)
            retry_scheduled = True
        self._on_failure(error, retry_scheduled)

    def _schedule_retry(self, token: CancellationToken, attempt_count: int) -> None:
        delay = calculate_backoff_delay(attempt_count, self._config)

        async def fire() -> None:
            if not self._is_current(token):
                return
            self._pending_retry = None
            await self._run(retry_attempt=True, scheduled=True)

        self._pending_retry = self._scheduler.schedule(delay, fire)
        self._transition(
            "retry:scheduled",
            data={"delay_seconds": delay, "attempt": attempt_count},
            status=OperationStatus.RETRYING,
        )

    def _on_success(self, result: T) -> None:
        """Hook for subclasses; called after a current success"""

    def _on_failure(self, error: ClassifiedError, retry_scheduled: bool) -> None:
        """Hook for subclasses; called after a current failure"""


class RetryableApiOperation(RetryableOperation[T]):
    """
    Retryable operation for API calls.

    VALIDATION, PERMISSION, NOT_FOUND, BUSINESS_LOGIC and UNKNOWN failures are
    never retried, whatever the supplied predicate returns.
    """

    def __init__(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int = 3,
        *,
        context: Optional[str] = None,
        on_success: Optional[Callable[[T], None]] = None,
        on_error: Optional[Callable[[ClassifiedError], None]] = None,
        retry_predicate: Optional[RetryPredicate] = None,
        config: Optional[RetryConfig] = None,
        scheduler: Optional[Scheduler] = None,
        classifier: Classifier = classify,
    ) -> None:
        """
        Create a new RetryableApiOperation.

        Args:
            operation: Zero-argument coroutine function to run
            max_retries: Maximum automatic/manual retries
            context: Label used in logs
            on_success: Called with the output after each current success
            on_error: Called with the error after a failure that will not be retried automatically
            retry_predicate: Extra predicate applied on top of the baseline filter
            config: Base configuration for delays
            scheduler: Timer collaborator
            classifier: Maps raw failures into ClassifiedError
        """
        predicate = retry_predicate or default_retry_predicate

        def guarded(error: ClassifiedError, attempt: int) -> bool:
            if not is_retryable_kind(error.kind):
                return False
            return predicate(error, attempt)

        effective = replace(
            merge_config(config), max_retries=max_retries, retry_predicate=guarded
        )
        super().__init__(
            operation,
            effective,
            scheduler=scheduler,
            classifier=classifier,
            name=context,
        )
        self._on_success_callback = on_success
        self._on_error_callback = on_error

    def _on_success(self, result: T) -> None:
        if self._on_success_callback is None:
            return
        try:
            self._on_success_callback(result)
        except Exception:
            logger.exception(f"RetryableApiOperation: on_success failed for {self._name}")

    def _on_failure(self, error: ClassifiedError, retry_scheduled: bool) -> None:
        if self._on_error_callback is None or retry_scheduled:
            return
        try:
            self._on_error_callback(error)
        except Exception:
            logger.exception(f"RetryableApiOperation: on_error failed for {self._name}")


def create_retryable_operation(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    **kwargs: Any,
) -> RetryableOperation[T]:
    """Create a new retryable operation"""
    return RetryableOperation(operation, config, **kwargs)
