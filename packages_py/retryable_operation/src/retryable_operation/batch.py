"""
Batch retry engine: sequential chunked execution with partial-success accounting
"""
import logging
from collections.abc import Sequence
from dataclasses import replace
from typing import Any, Awaitable, Callable, Generic, Optional

from .classifier import classify, log_error
from .config import async_sleep, calculate_chunk_delay, merge_batch_config
from .errors import ClassifiedError
from .types import (
    BatchConfig,
    BatchEvent,
    BatchEventListener,
    BatchEventType,
    BatchProgress,
    BatchState,
    ChunkFailure,
    R,
    T,
)

logger = logging.getLogger(__name__)


def chunk_items(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """
    Split items into contiguous chunks.

    Args:
        items: Items to split
        batch_size: Maximum chunk length (the last chunk may be shorter)

    Returns:
        List of chunks, empty for empty input
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class RetryableBatchOperation(Generic[T, R]):
    """
    Retryable Batch Operation

    Runs a chunk operation over fixed-size chunks of a list, strictly in
    order, retrying each chunk up to max_retries_per_chunk attempts. A chunk
    that exhausts its attempts is counted as failed; the batch then either
    continues (retry_failed_only=True) or raises the chunk's ClassifiedError.
    """

    def __init__(
        self,
        chunk_operation: Callable[[list[T]], Awaitable[R]],
        config: Optional[BatchConfig] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        classifier: Callable[[Any], ClassifiedError] = classify,
        name: Optional[str] = None,
    ) -> None:
        """
        Create a new RetryableBatchOperation.

        Args:
            chunk_operation: Coroutine function processing one chunk
            config: Batch configuration
            sleep: Async sleep used between chunk attempts
            classifier: Maps raw failures into ClassifiedError
            name: Label used in logs
        """
        self._chunk_operation = chunk_operation
        self._config = merge_batch_config(config)
        self._sleep = sleep or async_sleep
        self._classifier = classifier
        self._name = name or getattr(chunk_operation, "__name__", "batch")
        self._listeners: list[BatchEventListener] = []

        self._state = BatchState()
        self._failed_chunks: list[ChunkFailure[T]] = []
        self._generation = 0
        self._running = False

    @property
    def state(self) -> BatchState:
        """Current state snapshot"""
        return self._state

    @property
    def progress(self) -> BatchProgress:
        return self._state.progress

    @property
    def failed_chunks(self) -> list[ChunkFailure[T]]:
        """Chunks that exhausted their attempts in the last run"""
        return list(self._failed_chunks)

    @property
    def config(self) -> BatchConfig:
        return self._config

    def on(self, listener: BatchEventListener) -> Callable[[], None]:
        """
        Add an event listener.

        Returns:
            Function to remove the listener
        """
        self._listeners.append(listener)
        return lambda: self.off(listener)

    def off(self, listener: BatchEventListener) -> None:
        """Remove an event listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: BatchEventType, **data: Any) -> None:
        event = BatchEvent(type=event_type, progress=self._state.progress, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"RetryableBatchOperation._emit: listener failed on {event_type}")

    def _record(self, *, completed: int = 0, failed: int = 0) -> None:
        progress = self._state.progress
        self._state = replace(
            self._state,
            progress=replace(
                progress,
                completed=progress.completed + completed,
                failed=progress.failed + failed,
            ),
        )

    def reset(self) -> None:
        """Clear state; an in-flight run stops before its next chunk attempt."""
        self._generation += 1
        self._running = False
        self._failed_chunks = []
        self._state = BatchState()
        logger.debug(f"RetryableBatchOperation.reset: {self._name} reset")

    async def execute(self, items: Sequence[T]) -> list[R]:
        """
        Process items chunk by chunk.

        Args:
            items: Items to process

        Returns:
            Results of the successful chunks, in chunk order

        Raises:
            ClassifiedError: When retry_failed_only is False and a chunk
                exhausts its attempts
            RuntimeError: When a run is already in progress

        Example:
            batch = RetryableBatchOperation(import_users, BatchConfig(batch_size=50))
            results = await batch.execute(rows)
            batch.progress  # BatchProgress(completed=..., total=..., failed=...)
        """
        if self._running:
            raise RuntimeError("RetryableBatchOperation is already running")

        items = list(items)
        self._generation += 1
        generation = self._generation
        self._running = True
        self._failed_chunks = []
        self._state = BatchState(
            is_loading=True,
            error=None,
            progress=BatchProgress(completed=0, total=len(items), failed=0),
        )

        chunks = chunk_items(items, self._config.batch_size)
        logger.debug(
            f"RetryableBatchOperation.execute: {self._name} {len(items)} items in {len(chunks)} chunks"
        )
        self._emit("batch:start", chunks=len(chunks))

        results: list[R] = []
        try:
            for index, chunk in enumerate(chunks):
                if generation != self._generation:
                    break
                succeeded, result = await self._run_chunk(index, chunk, generation)
                if succeeded:
                    results.append(result)
        except ClassifiedError as error:
            if generation == self._generation:
                self._state = replace(self._state, error=error)
                log_error(error, f"{self._name} (batch aborted)")
                self._emit("batch:abort", error=error.message)
            raise
        finally:
            if generation == self._generation:
                self._state = replace(self._state, is_loading=False)
                self._running = False

        if generation == self._generation:
            self._emit("batch:complete", results=len(results))
        return results

    def _classify(self, raw: Exception) -> ClassifiedError:
        try:
            return self._classifier(raw)
        except Exception:
            logger.exception(f"RetryableBatchOperation: classifier failed for {self._name}")
            return classify(raw)

    async def _run_chunk(self, index: int, chunk: list[T], generation: int) -> tuple[bool, Any]:
        max_attempts = self._config.max_retries_per_chunk
        attempts = 0

        while True:
            try:
                result = await self._chunk_operation(chunk)
            except Exception as exc:
                attempts += 1
                error = self._classify(exc)
                if generation != self._generation:
                    return False, None

                if attempts >= max_attempts:
                    self._record(failed=len(chunk))
                    self._failed_chunks.append(ChunkFailure(index=index, items=chunk, error=error))
                    self._emit("chunk:failed", index=index, attempts=attempts, kind=error.kind.value)
                    logger.warning(
                        f"RetryableBatchOperation: {self._name} chunk {index} failed "
                        f"after {attempts} attempts ({error.kind.value})"
                    )
                    if not self._config.retry_failed_only:
                        if error is exc:
                            raise
                        raise error from exc
                    return False, None

                delay = calculate_chunk_delay(attempts - 1, self._config)
                self._emit("chunk:retry", index=index, attempt=attempts, delay_seconds=delay)
                await self._sleep(delay)
                if generation != self._generation:
                    return False, None
                continue

            if generation != self._generation:
                return False, None
            self._record(completed=len(chunk))
            self._emit("chunk:success", index=index, attempts=attempts + 1)
            return True, result


def create_batch_operation(
    chunk_operation: Callable[[list[T]], Awaitable[R]],
    config: Optional[BatchConfig] = None,
    **kwargs: Any,
) -> RetryableBatchOperation[T, R]:
    """Create a new batch operation"""
    return RetryableBatchOperation(chunk_operation, config, **kwargs)
