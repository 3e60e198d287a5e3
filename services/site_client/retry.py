"""Retry logic with exponential backoff for remote content calls."""

import asyncio
import logging
from functools import wraps
from typing import Callable, Any, Type, Tuple

logger = logging.getLogger(__name__)


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,)
):
    """
    Decorator to retry a coroutine function with exponential backoff.

    Only ``exceptions`` are retried; anything else propagates immediately.
    Retries are bounded by attempt count, not elapsed time.

    Args:
        max_attempts: Total number of attempts (at least 1)
        initial_delay: Delay in seconds before the second attempt
        exponential_base: Base for exponential backoff calculation
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated coroutine function with retry logic
    """
    attempts = max(1, max_attempts)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    if attempt + 1 >= attempts:
                        logger.warning(f"All {attempts} attempts failed for {func.__name__}: {e}")
                        raise

                    delay = initial_delay * (exponential_base ** attempt)
                    logger.warning(
                        f"Attempt {attempt + 1}/{attempts} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
