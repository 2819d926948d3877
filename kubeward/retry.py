"""Bounded retry with exponential backoff.

Two entry points over one loop:

- ``with_retry(op, ...)`` runs a zero-argument coroutine factory.
- ``@retry(...)`` decorates an async function.

The delay before attempt *i* (1-indexed, i >= 2) is
``base_delay * 2 ** (i - 2)``, optionally capped by ``max_delay``.
Errors the predicate rejects are raised immediately; once attempts are
exhausted the last error is raised.

Example:
    from kubeward.retry import with_retry, is_transient

    await with_retry(
        lambda: backend.delete_security_group(sg_id),
        max_attempts=8,
        base_delay=5.0,
        is_retryable=is_transient,
        operation=f"delete security group {sg_id}",
    )

    @retry(on=on_exception_message("throttl", "rate limit"), max_attempts=3)
    async def describe():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from loguru import logger

from kubeward.core.exceptions import (
    DependencyViolationError,
    KubewardError,
    TransientNetworkError,
)

P = ParamSpec("P")
T = TypeVar("T")

# Type for the retry predicate
RetryPredicate = Callable[[Exception], bool]

# Substrings of error messages that mark a failure as worth retrying.
RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "connection refused",
    "network",
    "temporary",
    "rate limit",
    "throttl",
    "service unavailable",
)


def _normalize(
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate,
) -> RetryPredicate:
    if isinstance(on, type) and issubclass(on, Exception):
        return lambda e: isinstance(e, on)
    if isinstance(on, tuple):
        return lambda e: isinstance(e, on)
    return on


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float | None = None,
) -> float:
    """Delay to sleep before ``attempt`` (1-indexed). Zero for the first."""
    if attempt <= 1:
        return 0.0
    delay = base_delay * (2 ** (attempt - 2))
    return min(delay, max_delay) if max_delay is not None else delay


async def with_retry[R](
    op: Callable[[], Awaitable[R]],
    *,
    max_attempts: int,
    is_retryable: RetryPredicate,
    base_delay: float,
    max_delay: float | None = None,
    jitter: bool = False,
    operation: str = "",
) -> R:
    """Run ``op`` until it succeeds, fails permanently, or attempts run out.

    Args:
        op: Zero-argument factory producing the coroutine to run.
        max_attempts: Total attempts, including the first one. Must be >= 1.
        is_retryable: Predicate deciding whether an error is transient.
        base_delay: Delay in seconds before the second attempt.
        max_delay: Optional cap on a single delay.
        jitter: Add up to 10% random delay.
        operation: Description used in log messages.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The non-retryable error, or the last error once
            attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    label = operation or getattr(op, "__name__", "operation")

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = backoff_delay(attempt, base_delay, max_delay)
            if jitter:
                delay += random.uniform(0, delay * 0.1)
            await asyncio.sleep(delay)

        try:
            return await op()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt == max_attempts:
                logger.warning(
                    f"{label}: giving up after {max_attempts} attempts: {type(e).__name__}: {e}"
                )
                raise
            logger.warning(
                f"{label}: retry {attempt}/{max_attempts} after {type(e).__name__}: {e}. "
                f"Waiting {backoff_delay(attempt + 1, base_delay, max_delay):.1f}s..."
            )

    raise AssertionError("unreachable")


def retry(
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float | None = 60.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of ``with_retry``.

    Args:
        on: When to retry. Can be:
            - An exception class (retry on that exception and subclasses)
            - A tuple of exception classes (retry on any of them)
            - A callable predicate (retry when predicate returns True)
            Default: retry on any Exception.
        max_attempts: Maximum number of attempts (including the first one).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Maximum delay cap in seconds.
        jitter: Whether to add random jitter (up to 10%).
    """
    should_retry = _normalize(on)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await with_retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                is_retryable=should_retry,
                base_delay=base_delay,
                max_delay=max_delay,
                jitter=jitter,
                operation=func.__name__,
            )

        return wrapper

    return decorator


# =============================================================================
# Common Predicates
# =============================================================================


def on_exception_message(*patterns: str, case_sensitive: bool = False) -> RetryPredicate:
    """Create a predicate that retries when exception message matches patterns."""

    def predicate(e: Exception) -> bool:
        msg = str(e)
        if not case_sensitive:
            msg = msg.lower()
            return any(p.lower() in msg for p in patterns)
        return any(p in msg for p in patterns)

    return predicate


def _retryable_kind(e: Exception) -> bool:
    return isinstance(e, (DependencyViolationError, TransientNetworkError))


def _untranslated_transient(e: Exception) -> bool:
    # Kubeward errors carry their kind already; only foreign errors are
    # judged by message.
    return not isinstance(e, KubewardError) and on_exception_message(*RETRYABLE_PATTERNS)(e)


def is_transient(e: Exception) -> bool:
    """Dependency violations and transient network errors are retryable.

    Errors from outside the kubeward taxonomy (OSError and friends) are
    retryable when their message names a well-known transient condition.
    Every other kubeward error, NotFound included, aborts at once.
    """
    return any_of(_retryable_kind, _untranslated_transient)(e)


# =============================================================================
# Combining Predicates
# =============================================================================


def any_of(*predicates: RetryPredicate) -> RetryPredicate:
    """Combine predicates with OR logic (retry if ANY predicate matches)."""

    def combined(e: Exception) -> bool:
        return any(p(e) for p in predicates)

    return combined

