"""Random exponential backoff for transient vendor failures."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, TypeVar

import openai

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_NETWORK_CODES = {
    "ETIMEDOUT",
    "ECONNRESET",
    "ECONNREFUSED",
    "EPIPE",
}


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        nested = body.get("error") if isinstance(body.get("error"), dict) else body
        value = nested.get("code") or nested.get("type")
        if isinstance(value, str):
            return value
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Decide whether ``error`` is transient (rate limit, 5xx, network)."""

    if _error_code(error) == "insufficient_quota":
        return False
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError, openai.RateLimitError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return True
    if _error_code(error) in _RETRYABLE_NETWORK_CODES:
        return True
    return isinstance(error, ConnectionError)


def backoff_delay(
    attempt: int,
    *,
    base_delay: float = 4.0,
    max_delay: float = 60.0,
    jitter: float = 0.8,
) -> float:
    delay = min(base_delay * 2**attempt, max_delay)
    return delay * (1 + random.random() * jitter)


async def random_backoff_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 5,
    base_delay: float = 4.0,
    max_delay: float = 60.0,
    jitter: float = 0.8,
    handle_error: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[Any]]] = None,
) -> T:
    """Call ``fn`` until it succeeds, sleeping between retryable failures.

    Non-retryable errors and the error of the last attempt propagate as-is.
    """

    attempts = max(1, max_retries)
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as exc:
            if attempt == attempts - 1 or not handle_error(exc):
                raise
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay, jitter=jitter)
            logger.warning(
                "Transient failure (%s); retrying in %.1fs (attempt %d/%d)",
                exc.__class__.__name__,
                delay,
                attempt + 1,
                attempts,
            )
            if on_retry is not None:
                await on_retry(attempt + 1, exc)
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")


__all__ = ["backoff_delay", "is_retryable_error", "random_backoff_retry"]
