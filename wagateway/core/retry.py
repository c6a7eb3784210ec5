"""Retry logic with exponential backoff for transient vendor failures."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from wagateway.observability.logging import get_logger

T = TypeVar("T")
log = get_logger("retry")

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


def is_transient(exc: BaseException) -> bool:
    """Timeouts, connection failures and 429/5xx answers are worth another try."""
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS
    return False


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 8.0,
    retryable: Callable[[BaseException], bool] = is_transient,
    **kwargs: Any,
) -> T:
    """
    Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts, the first one included
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        retryable: Predicate deciding whether an exception is retried
        **kwargs: Keyword arguments for func

    Returns:
        Function result

    Raises:
        The last exception once attempts are exhausted or it is not retryable
    """
    retry_config = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(min=min_wait, max=max_wait),
        retry=retry_if_exception(retryable),
        reraise=True,
    )

    attempt = 0
    async for attempt_state in retry_config:
        with attempt_state:
            attempt += 1
            try:
                result = await func(*args, **kwargs)
                if attempt > 1:
                    log.info(
                        "retry_succeeded",
                        func=getattr(func, "__name__", repr(func)),
                        attempts=attempt,
                    )
                return result
            except Exception as e:
                log.warning(
                    "retry_failed_attempt",
                    func=getattr(func, "__name__", repr(func)),
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

    # This should never be reached due to reraise=True
    raise RuntimeError("Retry logic failed unexpectedly")
