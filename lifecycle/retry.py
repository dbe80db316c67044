"""
Retry helpers for the coordinators' polling loops
"""

import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(func: Callable[[], T],
                       max_attempts: int = 10,
                       initial_delay: float = 0.1,
                       constant_delay: Optional[float] = None,
                       on_retry: Optional[Callable[[int, Exception], None]] = None,
                       sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Retry a function with exponential or fixed backoff

    Args:
        func: Function to retry
        max_attempts: Total number of attempts
        initial_delay: First delay in seconds, doubled after every failure
        constant_delay: Fixed delay in seconds, overrides the exponential schedule
        on_retry: Called with (attempt, error) before each re-attempt
        sleep: Sleep function

    Returns:
        Result of the function call

    Raises:
        Exception: Last exception if all attempts fail
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delay = initial_delay
    last_exception = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except Exception as e:
            last_exception = e
            if attempt == max_attempts:
                logger.error("All %d attempts failed: %s", max_attempts, e)
                break

            wait = constant_delay if constant_delay is not None else delay
            logger.warning("Attempt %d failed, retrying in %ss: %s", attempt, wait, e)
            if on_retry is not None:
                on_retry(attempt, e)
            sleep(wait)
            delay *= 2

    raise last_exception
