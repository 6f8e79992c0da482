# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - Retry transient store failures with exponential backoff
"""
import time
import logging
from functools import wraps
from typing import Callable, TypeVar, Any

logger = logging.getLogger(__name__)

T = TypeVar('T')


def call_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any
) -> T:
    """
    Call ``func`` and retry it on the given exceptions with exponential backoff

    Args:
        func: Function to call
        max_retries: Maximum number of retry attempts after the first call
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        retry_on: Exceptions that trigger a retry; anything else propagates at once
        sleep: Sleep function (replaced in tests)

    Returns:
        Result of the successful call
    """
    attempt = 0
    while True:
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Retry successful for {func.__name__} after {attempt} attempts")
            return result
        except retry_on as e:
            if attempt >= max_retries:
                logger.error(
                    f"Max retries ({max_retries}) exceeded for {func.__name__}. "
                    f"Final error: {type(e).__name__}: {e}"
                )
                raise

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(
                f"Error in {func.__name__} (attempt {attempt + 1}/{max_retries + 1}): "
                f"{type(e).__name__}: {e}. Retrying in {delay:.1f} seconds..."
            )
            sleep(delay)
            attempt += 1


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple = (Exception,)
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator form of :func:`call_with_backoff`

    Example:
        @retry_with_backoff(max_retries=3, retry_on=(StoreUnavailableError,))
        def commit(operations):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            return call_with_backoff(
                func, *args,
                max_retries=max_retries,
                base_delay=base_delay,
                max_delay=max_delay,
                retry_on=retry_on,
                **kwargs
            )
        return wrapper
    return decorator
