"""
Type definitions for retryable_operation
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Generic, Literal, Optional, TypeVar

if TYPE_CHECKING:
    from .errors import ClassifiedError


T = TypeVar("T")
R = TypeVar("R")


class ErrorKind(str, Enum):
    """Closed set of failure categories"""
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    SERVER_ERROR = "SERVER_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    VALIDATION = "VALIDATION"
    PERMISSION = "PERMISSION"
    NOT_FOUND = "NOT_FOUND"
    BUSINESS_LOGIC = "BUSINESS_LOGIC"
    UNKNOWN = "UNKNOWN"


class OperationStatus(str, Enum):
    """Lifecycle status of a single retryable operation"""
    IDLE = "idle"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


RetryPredicate = Callable[["ClassifiedError", int], bool]


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration for a single operation"""

    max_retries: int = 3
    """Maximum number of retries after the initial attempt. Default: 3"""

    initial_delay_seconds: float = 1.0
    """Delay before the first retry (seconds). Default: 1.0"""

    max_delay_seconds: float = 10.0
    """Cap applied before jitter (seconds). Default: 10.0"""

    backoff_multiplier: float = 2.0
    """Exponential growth factor, must be > 1. Default: 2.0"""

    jitter_ratio: float = 0.1
    """Upper bound of positive jitter as a fraction of the delay. Default: 0.1"""

    retry_predicate: Optional[RetryPredicate] = None
    """Decides retryability from (error, attempt). None uses the default predicate"""

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        if self.backoff_multiplier <= 1:
            raise ValueError("backoff_multiplier must be > 1")
        if not 0 <= self.jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1")


@dataclass(frozen=True)
class BatchConfig:
    """Configuration for chunked batch execution"""

    batch_size: int = 10
    """Items per chunk. Default: 10"""

    max_retries_per_chunk: int = 3
    """Total attempts allowed per chunk. Default: 3"""

    retry_failed_only: bool = True
    """Continue past a chunk that exhausted its attempts. Default: True"""

    retry_delay_seconds: float = 1.0
    """Delay before the second attempt of a chunk (seconds). Default: 1.0"""

    max_delay_seconds: float = 5.0
    """Cap on the delay between chunk attempts (seconds). Default: 5.0"""

    backoff_multiplier: float = 2.0
    """Growth factor between chunk attempts. Default: 2.0"""

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.max_retries_per_chunk < 1:
            raise ValueError("max_retries_per_chunk must be >= 1")
        if self.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.retry_delay_seconds:
            raise ValueError("max_delay_seconds must be >= retry_delay_seconds")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


@dataclass(frozen=True)
class OperationState:
    """Read-only snapshot of a RetryableOperation"""

    status: OperationStatus = OperationStatus.IDLE
    attempt_count: int = 0
    last_error: Optional["ClassifiedError"] = None
    can_retry: bool = False
    last_attempt_at: Optional[datetime] = None

    @property
    def is_loading(self) -> bool:
        return self.status == OperationStatus.RUNNING

    @property
    def is_retrying(self) -> bool:
        return self.status == OperationStatus.RETRYING


@dataclass(frozen=True)
class BatchProgress:
    """Progress counters for a batch run"""

    completed: int = 0
    total: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.completed + self.failed

    @property
    def is_complete(self) -> bool:
        return self.processed == self.total


@dataclass(frozen=True)
class BatchState:
    """Read-only snapshot of a RetryableBatchOperation"""

    is_loading: bool = False
    error: Optional["ClassifiedError"] = None
    progress: BatchProgress = field(default_factory=BatchProgress)


@dataclass(frozen=True)
class ChunkFailure(Generic[T]):
    """A chunk that exhausted its attempts"""

    index: int
    items: list[T]
    error: "ClassifiedError"


# Event types
EventType = Literal[
    "attempt:start",
    "attempt:success",
    "attempt:fail",
    "retry:scheduled",
    "retry:cancelled",
    "state:reset",
]


@dataclass
class RetryEvent:
    """Event emitted by a RetryableOperation on every transition"""

    type: EventType
    """Event type"""

    state: OperationState
    """State snapshot after the transition"""

    data: dict[str, Any] = field(default_factory=dict)
    """Event-specific data"""


RetryEventListener = Callable[[RetryEvent], None]


BatchEventType = Literal[
    "batch:start",
    "chunk:success",
    "chunk:retry",
    "chunk:failed",
    "batch:complete",
    "batch:abort",
]


@dataclass
class BatchEvent:
    """Event emitted by a RetryableBatchOperation"""

    type: BatchEventType
    """Event type"""

    progress: BatchProgress
    """Progress after the event"""

    data: dict[str, Any] = field(default_factory=dict)
    """Event-specific data"""


BatchEventListener = Callable[[BatchEvent], None]
