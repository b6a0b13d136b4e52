"""
Bounded exponential backoff for transient failures.

Used for sandbox creation, asset fetches and single part/chunk transfers.
The last failure is re-raised unchanged once the attempt budget is spent.
"""

import logging
import random
import time
from typing import TYPE_CHECKING, Callable, Optional, Tuple, Type, TypeVar

from .errors import TransientInfrastructureError

if TYPE_CHECKING:
    from .cancellation import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delays(attempts: int, base_delay: float, factor: float = 2.0) -> list:
    """Delays slept before attempts 2..n: base, base*factor, base*factor^2, ..."""
    return [base_delay * (factor ** i) for i in range(max(attempts - 1, 0))]


def retry_with_backoff(
    fn: Callable[[], T],
    attempts: int,
    base_delay: float,
    factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (TransientInfrastructureError,),
    description: str = "operation",
    jitter: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional["CancelToken"] = None,
) -> T:
    """
    Call fn until it succeeds or the attempt budget is spent.

    Args:
        fn: Zero-argument callable
        attempts: Total attempts (>= 1)
        base_delay: Delay before the second attempt, in seconds
        factor: Multiplier applied to the delay after each failure
        retry_on: Exception types considered transient
        description: Used in log messages
        jitter: Upper bound of random seconds added to each delay
        sleep: Sleep function (injectable for tests)
        cancel: Checked before every retry

    Returns:
        Whatever fn returns

    Raises:
        The last exception raised by fn, or PipelineCancelled
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delays = backoff_delays(attempts, base_delay, factor)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempt(s): {exc}")
                raise
            delay = delays[attempt - 1]
            if jitter:
                delay += random.uniform(0, jitter)
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {exc}; "
                f"retrying in {delay:.1f}s"
            )
            if cancel is not None:
                cancel.raise_if_cancelled(description)
            sleep(delay)
    raise RuntimeError(f"{description} failed without error")
