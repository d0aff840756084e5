from __future__ import annotations

import logging
import random
import sqlite3
import time
from dataclasses import dataclass
from typing import Callable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_sec: float = 0.05
    max_delay_sec: float = 1.0
    jitter: float = 0.25

    def delay_for(self, attempt: int) -> float:
        delay = min(self.max_delay_sec, self.base_delay_sec * (2 ** (attempt - 1)))
        return max(0.0, delay * (1.0 + random.uniform(-self.jitter, self.jitter)))


def is_busy_error(exc: Exception) -> bool:
    """True for SQLite lock contention that outlived the busy timeout."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    should_retry: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return fn()
        except Exception as exc:  # noqa: BLE001
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.debug("Attempt %d/%d failed (%s); retrying in %.3fs", attempt, policy.max_attempts, exc, delay)
            sleep(delay)
    raise RuntimeError("retry_call: max_attempts must be >= 1")
