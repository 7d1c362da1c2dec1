"""
User-facing messages per error kind
"""
from typing import Optional

from .types import ErrorKind


DEFAULT_LANGUAGE = "en-US"

_USER_MESSAGES: dict[str, dict[ErrorKind, str]] = {
    "en-US": {
        ErrorKind.NETWORK: "Network connection error. Please check your connection and try again.",
        ErrorKind.TIMEOUT: "The request took too long to complete. Please try again.",
        ErrorKind.SERVER_ERROR: "A server error occurred. Please try again later.",
        ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
        ErrorKind.VALIDATION: "Please check the information you provided and try again.",
        ErrorKind.PERMISSION: "You do not have permission to perform this action.",
        ErrorKind.NOT_FOUND: "The requested resource was not found.",
        ErrorKind.BUSINESS_LOGIC: "This action cannot be completed due to business rules.",
        ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
    },
    "zh-CN": {
        ErrorKind.NETWORK: "网络连接错误。请检查您的连接并重试",
        ErrorKind.TIMEOUT: "请求超时。请重试",
        ErrorKind.SERVER_ERROR: "服务暂时不可用。请稍后重试",
        ErrorKind.RATE_LIMIT: "请求过多。请等待后重试",
        ErrorKind.VALIDATION: "输入验证失败。请检查您的数据并重试",
        ErrorKind.PERMISSION: "您没有执行此操作的权限",
        ErrorKind.NOT_FOUND: "未找到请求的资源",
        ErrorKind.BUSINESS_LOGIC: "由于业务规则，无法完成此操作",
        ErrorKind.UNKNOWN: "发生意外错误。请重试",
    },
}

_DISPLAY_NAMES: dict[str, dict[ErrorKind, str]] = {
    "en-US": {
        ErrorKind.NETWORK: "Network Error",
        ErrorKind.TIMEOUT: "Request Timeout",
        ErrorKind.SERVER_ERROR: "Server Error",
        ErrorKind.RATE_LIMIT: "Rate Limit Exceeded",
        ErrorKind.VALIDATION: "Input Validation Error",
        ErrorKind.PERMISSION: "Permission Denied",
        ErrorKind.NOT_FOUND: "Resource Not Found",
        ErrorKind.BUSINESS_LOGIC: "Operation Not Allowed",
        ErrorKind.UNKNOWN: "Unexpected Error",
    },
    "zh-CN": {
        ErrorKind.NETWORK: "网络错误",
        ErrorKind.TIMEOUT: "请求超时",
        ErrorKind.SERVER_ERROR: "服务器错误",
        ErrorKind.RATE_LIMIT: "请求频率超限",
        ErrorKind.VALIDATION: "输入验证错误",
        ErrorKind.PERMISSION: "权限不足",
        ErrorKind.NOT_FOUND: "资源未找到",
        ErrorKind.BUSINESS_LOGIC: "操作不被允许",
        ErrorKind.UNKNOWN: "未知错误",
    },
}


def supported_languages() -> list[str]:
    """Languages with a full message table"""
    return sorted(_USER_MESSAGES)


def get_user_message(kind: ErrorKind, language: Optional[str] = None) -> str:
    """
    Get the user-facing message for an error kind.

    Unknown languages fall back to en-US.

    Args:
        kind: The error kind
        language: BCP 47 language tag, e.g. "zh-CN"

    Returns:
        Localized message
    """
    table = _USER_MESSAGES.get(language or DEFAULT_LANGUAGE, _USER_MESSAGES[DEFAULT_LANGUAGE])
    return table[kind]


def get_display_name(kind: ErrorKind, language: Optional[str] = None) -> str:
    """Get the short display name for an error kind"""
    table = _DISPLAY_NAMES.get(language or DEFAULT_LANGUAGE, _DISPLAY_NAMES[DEFAULT_LANGUAGE])
    return table[kind]
