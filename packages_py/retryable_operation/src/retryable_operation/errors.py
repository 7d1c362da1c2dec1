"""
Classified error types for retryable_operation
"""
from datetime import datetime, timezone
from typing import Any, Optional

from .messages import get_user_message
from .types import ErrorKind


class ClassifiedError(Exception):
    """
    A failure mapped into the closed ErrorKind taxonomy.

    Instances are created once per failed attempt and are immutable. Callers
    may raise ClassifiedError (or a subclass) directly from an operation; the
    classifier passes it through unchanged.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        cause: Any = None,
        details: Optional[dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        super().__init__(message)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "code", code or kind.value)
        object.__setattr__(self, "message", message)
        object.__setattr__(self, "user_message", user_message or get_user_message(kind))
        object.__setattr__(self, "cause", cause)
        object.__setattr__(self, "details", dict(details or {}))
        object.__setattr__(self, "occurred_at", occurred_at or datetime.now(timezone.utc))

    def __setattr__(self, name: str, value: Any) -> None:
        # Python itself sets these while raising and chaining
        if name in ("__traceback__", "__cause__", "__context__", "__suppress_context__", "__notes__"):
            object.__setattr__(self, name, value)
            return
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __reduce__(self) -> tuple:
        state = {
            "kind": self.kind,
            "code": self.code,
            "user_message": self.user_message,
            "cause": self.cause,
            "details": self.details,
            "occurred_at": self.occurred_at,
        }
        return _rebuild, (type(self), self.message, state)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"code={self.code!r}, message={self.message!r})"
        )

    @property
    def retryable(self) -> bool:
        from .classifier import is_retryable_kind

        return is_retryable_kind(self.kind)

    def is_kind(self, kind: ErrorKind) -> bool:
        """Check if error is of a specific kind"""
        return self.kind == kind

    def has_code(self, code: str) -> bool:
        """Check if error has a specific code"""
        return self.code == code

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a plain dict for logging/reporting"""
        return {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
            "cause": repr(self.cause) if self.cause is not None else None,
        }


def _rebuild(cls: type, message: str, state: dict[str, Any]) -> ClassifiedError:
    """Recreate a ClassifiedError (or subclass) for copy and pickle"""
    error = cls.__new__(cls, message)
    Exception.__init__(error, message)
    object.__setattr__(error, "message", message)
    for name, value in state.items():
        object.__setattr__(error, name, value)
    return error


class ValidationError(ClassifiedError):
    """Input was rejected"""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "INVALID_REQUEST")
        super().__init__(ErrorKind.VALIDATION, message, **kwargs)


class AccessDeniedError(ClassifiedError):
    """Caller lacks permission"""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "INSUFFICIENT_PERMISSIONS")
        super().__init__(ErrorKind.PERMISSION, message, **kwargs)


class NotFoundError(ClassifiedError):
    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "RESOURCE_NOT_FOUND")
        super().__init__(ErrorKind.NOT_FOUND, message, **kwargs)


class BusinessLogicError(ClassifiedError):
    """A domain rule prevented the action"""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "BUSINESS_RULE_VIOLATION")
        super().__init__(ErrorKind.BUSINESS_LOGIC, message, **kwargs)


class NetworkError(ClassifiedError):
    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "NETWORK_ERROR")
        super().__init__(ErrorKind.NETWORK, message, **kwargs)


class OperationTimeoutError(ClassifiedError):
    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", "SERVER_TIMEOUT")
        super().__init__(ErrorKind.TIMEOUT, message, **kwargs)
