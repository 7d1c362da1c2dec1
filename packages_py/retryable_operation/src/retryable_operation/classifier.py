"""
Error classification for retryable_operation

Maps arbitrary failure values (httpx errors, builtin exceptions, status-bearing
objects, plain dicts) into a ClassifiedError so retry decisions never depend
on where a failure came from.
"""
import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Optional

import httpx

from .errors import ClassifiedError
from .messages import get_user_message
from .types import ErrorKind

logger = logging.getLogger(__name__)


# Every ErrorKind must appear here; tests assert full coverage.
RETRYABLE_BY_KIND: dict[ErrorKind, bool] = {
    ErrorKind.NETWORK: True,
    ErrorKind.TIMEOUT: True,
    ErrorKind.SERVER_ERROR: True,
    ErrorKind.RATE_LIMIT: True,
    ErrorKind.VALIDATION: False,
    ErrorKind.PERMISSION: False,
    ErrorKind.NOT_FOUND: False,
    ErrorKind.BUSINESS_LOGIC: False,
    ErrorKind.UNKNOWN: False,
}

_STATUS_KINDS: dict[int, tuple[ErrorKind, str]] = {
    400: (ErrorKind.VALIDATION, "INVALID_REQUEST"),
    401: (ErrorKind.PERMISSION, "NOT_AUTHENTICATED"),
    403: (ErrorKind.PERMISSION, "INSUFFICIENT_PERMISSIONS"),
    404: (ErrorKind.NOT_FOUND, "RESOURCE_NOT_FOUND"),
    408: (ErrorKind.TIMEOUT, "REQUEST_TIMEOUT"),
    409: (ErrorKind.BUSINESS_LOGIC, "CONFLICT"),
    422: (ErrorKind.VALIDATION, "UNPROCESSABLE_ENTITY"),
    429: (ErrorKind.RATE_LIMIT, "RATE_LIMIT_EXCEEDED"),
}

_CODE_KINDS: dict[str, ErrorKind] = {
    "NETWORK_ERROR": ErrorKind.NETWORK,
    "ECONNABORTED": ErrorKind.NETWORK,
    "ECONNREFUSED": ErrorKind.NETWORK,
    "ECONNRESET": ErrorKind.NETWORK,
    "ETIMEDOUT": ErrorKind.TIMEOUT,
}

_TIMEOUT_PATTERNS = ("timed out", "timeout")
_NETWORK_PATTERNS = ("network", "connection", "socket", "refused")


def is_retryable_kind(kind: ErrorKind) -> bool:
    """
    Check if an error kind is retryable by default.

    Args:
        kind: The error kind

    Returns:
        Whether failures of this kind may be retried

    Raises:
        KeyError: If kind is missing from RETRYABLE_BY_KIND
    """
    return RETRYABLE_BY_KIND[kind]


def status_to_kind(status: int) -> tuple[ErrorKind, str]:
    """
    Map an HTTP status code to an error kind and code.

    Args:
        status: HTTP status code

    Returns:
        Tuple of (kind, code)
    """
    if status in _STATUS_KINDS:
        return _STATUS_KINDS[status]
    if 500 <= status < 600:
        return ErrorKind.SERVER_ERROR, "SERVICE_UNAVAILABLE"
    return ErrorKind.UNKNOWN, f"HTTP_{status}"


def _coerce_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        status = int(value)
    except (TypeError, ValueError):
        return None
    if 100 <= status < 600:
        return status
    return None


def _extract_status(raw: Any) -> Optional[int]:
    """Find an HTTP status on raw, its response, or its cause chain"""
    for attr in ("status_code", "status"):
        status = _coerce_status(getattr(raw, attr, None))
        if status is not None:
            return status

    response = getattr(raw, "response", None)
    if response is not None:
        status = _coerce_status(getattr(response, "status_code", None))
        if status is not None:
            return status

    cause = getattr(raw, "__cause__", None)
    if isinstance(cause, BaseException) and cause is not raw:
        return _extract_status(cause)

    return None


def _response_message(response: Any) -> Optional[str]:
    """Pull a server-provided message out of a JSON error body"""
    if not isinstance(response, httpx.Response):
        return None
    try:
        body = response.json()
    except (ValueError, httpx.ResponseNotRead):
        return None
    if isinstance(body, Mapping):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return None


def _from_status(
    status: int,
    raw: Any,
    message: str,
    context: Optional[str],
    language: Optional[str],
) -> ClassifiedError:
    kind, code = status_to_kind(status)
    details: dict[str, Any] = {"http_status": status}
    if context:
        details["context"] = context

    try:
        request = getattr(raw, "request", None)
    except RuntimeError:
        # httpx raises when .request was never attached
        request = None
    if isinstance(request, httpx.Request):
        details["url"] = str(request.url)
        details["method"] = request.method

    response = getattr(raw, "response", None)
    server_message = _response_message(response)

    return ClassifiedError(
        kind,
        server_message or message,
        code=code,
        user_message=get_user_message(kind, language),
        cause=raw,
        details=details,
    )


def _from_mapping(raw: Mapping, context: Optional[str], language: Optional[str]) -> ClassifiedError:
    message = str(raw.get("message") or "Unknown error occurred")
    status = _coerce_status(raw.get("status") if "status" in raw else raw.get("status_code"))
    if status is not None:
        return _from_status(status, raw, message, context, language)

    code = raw.get("code")
    kind = _CODE_KINDS.get(str(code).upper()) if code is not None else None
    if kind is None:
        kind = ErrorKind.UNKNOWN
    return ClassifiedError(
        kind,
        message,
        code=str(code) if code is not None else None,
        user_message=get_user_message(kind, language),
        cause=raw,
        details={"context": context} if context else None,
    )


def _kind_from_exception(exc: BaseException) -> Optional[tuple[ErrorKind, str]]:
    if isinstance(exc, (httpx.TimeoutException, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT, "SERVER_TIMEOUT"
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return ErrorKind.NETWORK, "NETWORK_ERROR"

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.upper() in _CODE_KINDS:
        return _CODE_KINDS[code.upper()], code.upper()

    message = str(exc).lower()
    if any(pattern in message for pattern in _TIMEOUT_PATTERNS):
        return ErrorKind.TIMEOUT, "SERVER_TIMEOUT"
    if any(pattern in message for pattern in _NETWORK_PATTERNS):
        return ErrorKind.NETWORK, "NETWORK_ERROR"
    return None


def _classify(raw: Any, context: Optional[str], language: Optional[str]) -> ClassifiedError:
    if isinstance(raw, ClassifiedError):
        return raw

    if isinstance(raw, Mapping):
        return _from_mapping(raw, context, language)

    message = str(raw) if raw is not None else "Unknown error occurred"
    if not message:
        message = type(raw).__name__

    status = _extract_status(raw)
    if status is not None:
        return _from_status(status, raw, message, context, language)

    if isinstance(raw, BaseException):
        matched = _kind_from_exception(raw)
        if matched is None and isinstance(raw.__cause__, BaseException):
            matched = _kind_from_exception(raw.__cause__)
        if matched is not None:
            kind, code = matched
            return ClassifiedError(
                kind,
                message,
                code=code,
                user_message=get_user_message(kind, language),
                cause=raw,
                details={"context": context} if context else None,
            )

    return ClassifiedError(
        ErrorKind.UNKNOWN,
        message,
        code="UNKNOWN_ERROR",
        user_message=get_user_message(ErrorKind.UNKNOWN, language),
        cause=raw,
        details={"context": context} if context else None,
    )


def classify(
    raw: Any,
    context: Optional[str] = None,
    language: Optional[str] = None,
) -> ClassifiedError:
    """
    Classify an arbitrary failure value.

    Never raises: a failure inside classification yields an UNKNOWN error
    with code CLASSIFICATION_FAILED.

    Args:
        raw: The failure (exception, httpx error, status-bearing object, dict, ...)
        context: Optional description of where the failure happened
        language: Optional language for the user-facing message

    Returns:
        The classified error

    Example:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            error = classify(exc, context="load_users")
            error.kind  # ErrorKind.RATE_LIMIT for a 429
    """
    try:
        return _classify(raw, context, language)
    except Exception as exc:
        logger.debug(f"classify: classification of {type(raw).__name__} failed: {exc!r}")
        return ClassifiedError(
            ErrorKind.UNKNOWN,
            "Unknown error occurred",
            code="CLASSIFICATION_FAILED",
            cause=raw,
        )


def log_error(error: ClassifiedError, context: Optional[str] = None) -> None:
    """
    Log a classified error for monitoring/debugging.

    Retryable kinds log at WARNING, everything else at ERROR.

    Args:
        error: The classified error
        context: Where the failure happened
    """
    level = logging.WARNING if is_retryable_kind(error.kind) else logging.ERROR
    record = error.to_dict()
    if context:
        record["context"] = context
    logger.log(
        level,
        f"[{error.kind.value}] {error.code}: {error.message}"
        + (f" ({context})" if context else ""),
        extra={"classified_error": record},
    )
