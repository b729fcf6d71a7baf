"""
Retry scheduling policy for the offline queue.
"""
import random
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Optional

from pingchat.core.config import Settings


@dataclass
class ExponentialBackoff:
    """
    delay(n) = min(max_delay, base * multiplier ** (n - 1)), spread by +/- jitter.

    ``attempt`` is the retry number starting at 1. The policy only computes
    delays; the queue turns them into next_attempt_at timestamps.
    """

    base_seconds: float = 1.0
    max_seconds: float = 15.0
    multiplier: float = 2.0
    jitter: float = 0.2
    max_attempts: int = 3
    random_fn: Callable[[], float] = field(default=random.random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExponentialBackoff":
        return cls(
            base_seconds=settings.backoff_base_seconds,
            max_seconds=settings.backoff_max_seconds,
            multiplier=settings.backoff_multiplier,
            jitter=settings.backoff_jitter,
            max_attempts=settings.offline_queue_max_retries,
        )

    def delay(self, attempt: int) -> timedelta:
        raw = min(self.max_seconds, self.base_seconds * self.multiplier ** max(0, attempt - 1))
        if self.jitter:
            # random_fn() in [0, 1) maps to a factor in [1 - jitter, 1 + jitter)
            raw *= 1 + self.jitter * (2 * self.random_fn() - 1)
        return timedelta(seconds=max(0.0, raw))

    def should_retry(self, retry_count: int, max_attempts: Optional[int] = None) -> bool:
        """
        True while another attempt is allowed after ``retry_count`` failures.

        ``max_attempts`` overrides the policy ceiling, e.g. with the one an
        item was queued under.
        """
        ceiling = self.max_attempts if max_attempts is None else max_attempts
        return retry_count < ceiling
