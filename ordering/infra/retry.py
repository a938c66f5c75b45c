"""
Retry utilities with exponential backoff and jitter.
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,),
):
    """
    Decorator for retrying a call that failed with a transient error.

    Args:
        max_retries: Retries after the first attempt; the last error is re-raised
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for a single delay
        exponential_base: Multiplier applied to the delay after every retry
        jitter: Add up to 25% random jitter to each delay
        exceptions: Exception types that trigger a retry
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == max_retries:
                        raise
                    actual_delay = delay
                    if jitter:
                        actual_delay += delay * 0.25 * random.random()
                    actual_delay = min(actual_delay, max_delay)
                    logger.warning(
                        "retrying_after_error",
                        extra={
                            "operation": func.__qualname__,
                            "attempt": attempt + 1,
                            "error": str(exc),
                        },
                    )
                    time.sleep(actual_delay)
                    delay *= exponential_base
            raise AssertionError("unreachable")

        return wrapper
    return decorator
