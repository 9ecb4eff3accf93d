"""
Retry decorator with exponential backoff for MongoDB operations

Provides resilient retry logic for transient driver failures with:
- Exponential backoff (base 2.0)
- Jitter to prevent thundering herd
- Configurable max retries
- MongoDB-specific exception classification

Usage:
    from utils.retry import retry_with_backoff

    @retry_with_backoff(max_retries=3, base_delay=1.0)
    async def ping(client):
        await client.admin.command("ping")
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from pymongo.errors import ConnectionFailure, OperationFailure

logger = logging.getLogger(__name__)

# Error labels the server attaches to errors that are safe to retry
RETRYABLE_ERROR_LABELS = ("TransientTransactionError", "RetryableWriteError", "ResumableChangeStreamError")


def _compute_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
    jitter: bool,
) -> float:
    delay = min(base_delay * (exponential_base ** attempt), max_delay)

    if jitter:
        # +/-25% of the computed delay, never below 100ms
        jitter_amount = delay * 0.25
        delay = max(0.1, delay + random.uniform(-jitter_amount, jitter_amount))

    return delay


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator that retries a coroutine function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: True)
        retryable_exceptions: Exception types to retry (default: all exceptions)
        retry_if: Predicate deciding whether a raised exception is retryable;
            checked after ``retryable_exceptions``

    Returns:
        Decorated coroutine function with retry logic

    Example:
        @retry_with_backoff(
            max_retries=5,
            retryable_exceptions=(PyMongoError,),
            retry_if=is_retryable_mongo_exception,
        )
        async def connect():
            await client.admin.command("ping")
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        func_name = getattr(func, "__name__", "coroutine")

        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except Exception as e:
                    retryable = retryable_exceptions is None or isinstance(e, retryable_exceptions)
                    if retryable and retry_if is not None:
                        retryable = retry_if(e)

                    if not retryable:
                        logger.error(
                            f"Non-retryable exception in {func_name}: {type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = _compute_delay(attempt, base_delay, max_delay, exponential_base, jitter)

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError(f"Unexpected error in retry logic for {func_name}")

        return wrapper
    return decorator


def is_retryable_mongo_exception(exception: Exception) -> bool:
    """
    Determine if a MongoDB driver exception is transient

    Retryable:
    - Network and server selection failures (ConnectionFailure and subclasses)
    - Operation failures labelled by the server as transient, retryable
      writes or resumable change stream errors

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    if isinstance(exception, ConnectionFailure):
        return True

    if isinstance(exception, OperationFailure):
        return any(exception.has_error_label(label) for label in RETRYABLE_ERROR_LABELS)

    return False
