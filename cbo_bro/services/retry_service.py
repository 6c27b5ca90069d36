"""
Retry with exponential backoff for transient upstream failures.

Used by the non-streaming LLM call path. Streaming calls are not retried:
chunks may already have reached the client.
"""
import logging
from typing import Any, Callable

import httpx
from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger("cbo-bro.retry_service")

RETRYABLE_STATUS_CODES = (429, 503, 504)


def is_retryable_http_error(exception: BaseException) -> bool:
    """
    Determine if an HTTP error is retryable.

    Args:
        exception: Exception to check

    Returns:
        True for timeouts, connect errors and 429/503/504 responses
    """
    if isinstance(exception, (httpx.TimeoutException, httpx.ConnectError)):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code in RETRYABLE_STATUS_CODES

    return False


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 2.0,
    max_wait: float = 10.0,
    multiplier: float = 1.0
):
    """
    Create a retry decorator with exponential backoff.

    The last exception is re-raised unchanged once attempts are exhausted, so
    callers translate it into their own error type.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_retryable_http_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True
    )


async def call_with_retry(
    func: Callable[..., Any],
    *args,
    max_attempts: int = 3,
    min_wait: float = 2.0,
    max_wait: float = 10.0,
    **kwargs
) -> Any:
    """
    Call an async function with retry logic.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait between attempts in seconds
        max_wait: Maximum wait between attempts in seconds
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call
    """
    retry_decorator = create_retry_decorator(
        max_attempts=max_attempts,
        min_wait=min_wait,
        max_wait=max_wait
    )

    @retry_decorator
    async def _wrapped():
        return await func(*args, **kwargs)

    return await _wrapped()
