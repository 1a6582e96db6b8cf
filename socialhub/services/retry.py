"""
Retry policy with exponential backoff and jitter for platform publish calls
"""
import random
from dataclasses import dataclass
from typing import Optional

from socialhub.config import settings


@dataclass(frozen=True)
class RetryPolicy:
    """
    Delay before retry n (n >= 1) is base * 2**(n-1), jittered by +/- ``jitter``.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        policy.delay_for(1)  # ~1s
        policy.delay_for(2)  # ~2s
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 0.2
    max_delay: float = 60.0

    @classmethod
    def from_settings(cls, cfg=None) -> "RetryPolicy":
        cfg = cfg or settings
        return cls(
            max_attempts=cfg.publish_max_attempts,
            base_delay=cfg.publish_backoff_base_seconds,
            jitter=cfg.publish_backoff_jitter,
        )

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(1 - self.jitter, 1 + self.jitter)
        if retry_after:
            # the platform told us when to come back
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)
