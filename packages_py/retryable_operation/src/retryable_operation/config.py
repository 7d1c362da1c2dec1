"""
Configuration utilities for retryable_operation
"""
import asyncio
import logging
import os
import random
from collections.abc import Mapping
from dataclasses import fields, replace
from typing import Any, Callable, Optional

from .classifier import is_retryable_kind
from .errors import ClassifiedError
from .types import BatchConfig, RetryConfig, RetryPredicate

logger = logging.getLogger(__name__)


def default_retry_predicate(error: ClassifiedError, attempt: int) -> bool:
    """Retry network, timeout, server and rate-limit failures"""
    return is_retryable_kind(error.kind)


# Default configurations
DEFAULT_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    initial_delay_seconds=1.0,
    max_delay_seconds=10.0,
    backoff_multiplier=2.0,
    jitter_ratio=0.1,
    retry_predicate=default_retry_predicate,
)

DEFAULT_BATCH_CONFIG = BatchConfig(
    batch_size=10,
    max_retries_per_chunk=3,
    retry_failed_only=True,
    retry_delay_seconds=1.0,
    max_delay_seconds=5.0,
    backoff_multiplier=2.0,
)


def calculate_backoff_delay(
    attempt: int,
    config: RetryConfig,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Calculate exponential backoff delay with positive jitter.

    base = min(initial * multiplier^attempt, max_delay)
    delay = base + random(0, base * jitter_ratio)

    Args:
        attempt: Zero-based retry index (the first retry uses 0)
        config: Retry configuration
        rng: Optional random source for deterministic delays

    Returns:
        Delay in seconds
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")

    try:
        exponential = config.initial_delay_seconds * (config.backoff_multiplier ** attempt)
    except OverflowError:
        exponential = config.max_delay_seconds
    base = min(exponential, config.max_delay_seconds)

    sample = rng.random() if rng is not None else random.random()
    return base + sample * base * config.jitter_ratio


def calculate_chunk_delay(attempt: int, config: BatchConfig) -> float:
    """
    Calculate the delay between attempts of one batch chunk (no jitter).

    Args:
        attempt: Zero-based index of the failed attempt
        config: Batch configuration

    Returns:
        Delay in seconds
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    try:
        delay = config.retry_delay_seconds * (config.backoff_multiplier ** attempt)
    except OverflowError:
        delay = config.max_delay_seconds
    return min(delay, config.max_delay_seconds)


def merge_config(config: Optional[RetryConfig] = None) -> RetryConfig:
    """
    Merge configuration with defaults.

    Args:
        config: User-provided configuration

    Returns:
        Complete configuration with a retry predicate
    """
    if config is None:
        return DEFAULT_RETRY_CONFIG
    if config.retry_predicate is None:
        return replace(config, retry_predicate=default_retry_predicate)
    return config


def merge_batch_config(config: Optional[BatchConfig] = None) -> BatchConfig:
    """Merge batch configuration with defaults"""
    if config is None:
        return DEFAULT_BATCH_CONFIG
    return config


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


_PARSERS: dict[type, Callable[[str], Any]] = {
    int: int,
    float: float,
    bool: _parse_bool,
}


def _resolve_fields(
    defaults: Any,
    overrides: Optional[Mapping[str, Any]],
    env_prefix: str,
    skip: tuple[str, ...] = (),
) -> dict[str, Any]:
    """
    Resolve each dataclass field by waterfall.

    Precedence:
    1. overrides[field]
    2. {env_prefix}{FIELD} environment variable
    3. value on defaults
    """
    overrides = overrides or {}
    resolved: dict[str, Any] = {}

    for f in fields(defaults):
        if f.name in skip:
            continue

        if f.name in overrides:
            logger.debug(f"_resolve_fields: {f.name} from overrides")
            resolved[f.name] = overrides[f.name]
            continue

        env_key = f"{env_prefix}{f.name.upper()}"
        raw = os.environ.get(env_key)
        if raw is not None:
            default_value = getattr(defaults, f.name)
            parser = _PARSERS.get(type(default_value))
            if parser is not None:
                try:
                    resolved[f.name] = parser(raw)
                    logger.debug(f"_resolve_fields: {f.name} from {env_key}")
                    continue
                except ValueError:
                    logger.warning(f"_resolve_fields: ignoring unparseable {env_key}={raw!r}")

        resolved[f.name] = getattr(defaults, f.name)

    return resolved


def resolve_retry_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: str = "RETRY_",
    retry_predicate: Optional[RetryPredicate] = None,
) -> RetryConfig:
    """
    Build a RetryConfig from explicit overrides, environment and defaults.

    Environment variables: RETRY_MAX_RETRIES, RETRY_INITIAL_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS, RETRY_BACKOFF_MULTIPLIER, RETRY_JITTER_RATIO.

    Args:
        overrides: Field values taking precedence over everything else
        env_prefix: Prefix of the environment variables
        retry_predicate: Predicate to use instead of the default

    Returns:
        Validated configuration

    Raises:
        ValueError: If the resolved values are invalid
    """
    values = _resolve_fields(
        DEFAULT_RETRY_CONFIG, overrides, env_prefix, skip=("retry_predicate",)
    )
    values["retry_predicate"] = retry_predicate or default_retry_predicate
    return RetryConfig(**values)


def resolve_batch_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env_prefix: str = "RETRY_BATCH_",
) -> BatchConfig:
    """
    Build a BatchConfig from explicit overrides, environment and defaults.

    Environment variables: RETRY_BATCH_BATCH_SIZE is also accepted as
    RETRY_BATCH_SIZE; the other fields use RETRY_BATCH_<FIELD>.
    """
    merged = dict(overrides or {})
    if "batch_size" not in merged:
        size = os.environ.get(f"{env_prefix.rstrip('_')}_SIZE")
        if size is not None:
            try:
                merged["batch_size"] = int(size)
            except ValueError:
                logger.warning(f"resolve_batch_config: ignoring unparseable batch size {size!r}")
    return BatchConfig(**_resolve_fields(DEFAULT_BATCH_CONFIG, merged, env_prefix))


async def async_sleep(seconds: float) -> None:
    """
    Sleep for a specified duration (async).

    Args:
        seconds: Duration in seconds
    """
    await asyncio.sleep(seconds)
