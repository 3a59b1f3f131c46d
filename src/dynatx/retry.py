from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .errors import RetriesExhaustedError

logger = logging.getLogger(__name__)

JITTER = 0.1


@dataclass(frozen=True)
class BackoffPolicy:
    retries: int
    initial: float
    maximum: float | None = None

    def next_delay(self, delay: float) -> float:
        doubled = delay * 2
        if self.maximum is not None:
            return min(self.maximum, doubled)
        return doubled


def jittered(delay: float, uniform: Callable[[float, float], float]) -> float:
    return delay + uniform(-JITTER * delay, JITTER * delay)


def retry_with_backoff[T](
    operation: Callable[[int], T],
    *,
    should_retry: Callable[[Exception], bool],
    policy: BackoffPolicy,
    sleep: Callable[[float], None],
    uniform: Callable[[float, float], float],
) -> T:
    """Runs ``operation(attempt)`` until it succeeds or retries run out.

    Errors rejected by ``should_retry`` propagate unchanged. After
    ``policy.retries + 1`` failed attempts, ``RetriesExhaustedError`` is raised
    from the last error.
    """
    if policy.retries < 0:
        raise ValueError("retries must be >= 0")

    delay = policy.initial
    last: Exception | None = None
    for attempt in range(policy.retries + 1):
        try:
            return operation(attempt)
        except Exception as err:
            if not should_retry(err):
                raise
            last = err

        if attempt < policy.retries:
            wait = jittered(delay, uniform)
            logger.debug("attempt %d failed (%s), retrying in %.3fs", attempt + 1, last, wait)
            sleep(wait)
            delay = policy.next_delay(delay)

    logger.warning("giving up after %d attempts: %s", policy.retries + 1, last)
    raise RetriesExhaustedError(policy.retries + 1) from last
