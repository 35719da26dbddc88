from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    return int(base_delay_ms * (2 ** (attempt - 1)))


def with_retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn until it succeeds or max_attempts is reached.
    Waits base_delay_ms * 2^(attempt-1) between attempts and re-raises the last error.
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if attempt >= attempts:
                raise
            delay_ms = backoff_delay_ms(attempt, base_delay_ms)
            logger.warning(
                'attempt %s/%s failed (%s), retrying in %sms',
                attempt, attempts, exc, delay_ms,
            )
            sleep(delay_ms / 1000.0)
    raise RuntimeError('unreachable')
