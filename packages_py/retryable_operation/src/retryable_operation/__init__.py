"""
Retryable operations with error classification, backoff with jitter,
supersession and chunked batch execution.
"""
from .types import (
    ErrorKind,
    OperationStatus,
    RetryConfig,
    BatchConfig,
    OperationState,
    BatchProgress,
    BatchState,
    ChunkFailure,
    RetryEvent,
    RetryEventListener,
    BatchEvent,
    BatchEventListener,
    RetryPredicate,
)
from .errors import (
    ClassifiedError,
    ValidationError,
    AccessDeniedError,
    NotFoundError,
    BusinessLogicError,
    NetworkError,
    OperationTimeoutError,
)
from .messages import get_user_message, get_display_name, supported_languages
from .classifier import (
    RETRYABLE_BY_KIND,
    classify,
    is_retryable_kind,
    status_to_kind,
    log_error,
)
from .config import (
    DEFAULT_RETRY_CONFIG,
    DEFAULT_BATCH_CONFIG,
    default_retry_predicate,
    calculate_backoff_delay,
    calculate_chunk_delay,
    merge_config,
    merge_batch_config,
    resolve_retry_config,
    resolve_batch_config,
    async_sleep,
)
from .scheduler import Scheduler, AsyncioScheduler, ScheduledHandle
from .operation import (
    CancellationToken,
    RetryableOperation,
    RetryableApiOperation,
    create_retryable_operation,
)
from .batch import RetryableBatchOperation, chunk_items, create_batch_operation


__all__ = [
    # Types
    "ErrorKind",
    "OperationStatus",
    "RetryConfig",
    "BatchConfig",
    "OperationState",
    "BatchProgress",
    "BatchState",
    "ChunkFailure",
    "RetryEvent",
    "RetryEventListener",
    "BatchEvent",
    "BatchEventListener",
    "RetryPredicate",
    # Errors
    "ClassifiedError",
    "ValidationError",
    "AccessDeniedError",
    "NotFoundError",
    "BusinessLogicError",
    "NetworkError",
    "OperationTimeoutError",
    # Messages
    "get_user_message",
    "get_display_name",
    "supported_languages",
    # Classifier
    "RETRYABLE_BY_KIND",
    "classify",
    "is_retryable_kind",
    "status_to_kind",
    "log_error",
    # Config
    "DEFAULT_RETRY_CONFIG",
    "DEFAULT_BATCH_CONFIG",
    "default_retry_predicate",
    "calculate_backoff_delay",
    "calculate_chunk_delay",
    "merge_config",
    "merge_batch_config",
    "resolve_retry_config",
    "resolve_batch_config",
    "async_sleep",
    # Scheduler
    "Scheduler",
    "AsyncioScheduler",
    "ScheduledHandle",
    # Engines
    "CancellationToken",
    "RetryableOperation",
    "RetryableApiOperation",
    "create_retryable_operation",
    "RetryableBatchOperation",
    "chunk_items",
    "create_batch_operation",
]


__version__ = "1.0.0"
