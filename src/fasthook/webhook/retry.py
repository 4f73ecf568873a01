"""Retry classification and exponential backoff."""

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fasthook.config import Settings
from fasthook.db.enums import AttemptOutcome

# Smallest gap kept between consecutive not-before timestamps
MIN_STEP = timedelta(milliseconds=1)


def classify_status(status_code: int) -> AttemptOutcome:
    """Map an HTTP status to an attempt outcome.

    2xx succeeds; 5xx and 429 are retryable; everything else (other 4xx,
    unfollowed redirects, informational) is terminal.
    """
    if 200 <= status_code < 300:
        return AttemptOutcome.SUCCEEDED
    if status_code >= 500 or status_code == 429:
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.TERMINAL


@dataclass
class RetryPolicy:
    """Backoff parameters for retryable failures.

    ``delay = min(max_delay, base_delay * 2**attempts) * (1 +/- jitter)``,
    never above ``max_delay``.
    """

    max_attempts: int = 10
    base_delay: float = 1.0
    max_delay: float = 3600.0
    jitter: float = 0.1
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings, rng: random.Random | None = None) -> "RetryPolicy":
        return cls(
            max_attempts=settings.webhook_max_attempts,
            base_delay=settings.webhook_retry_base_delay,
            max_delay=settings.webhook_retry_max_delay,
            jitter=settings.webhook_retry_jitter,
            rng=rng or random.Random(),
        )

    def has_attempts_remaining(self, attempts: int) -> bool:
        """True if another attempt is allowed after ``attempts`` were made."""
        return attempts < self.max_attempts

    def compute_delay(self, attempts: int) -> float:
        """Seconds to wait after the ``attempts``-th failed attempt."""
        # Cap the exponent first so huge attempt counts don't overflow
        exponent = min(attempts, 62)
        raw = min(self.max_delay, self.base_delay * (2**exponent))
        if self.jitter:
            raw *= 1 + self.rng.uniform(-self.jitter, self.jitter)
        return max(0.001, min(self.max_delay, raw))

    def next_attempt_at(
        self,
        attempts: int,
        now: datetime,
        previous: datetime | None = None,
    ) -> datetime:
        """Absolute not-before time for the next attempt.

        Strictly later than ``previous`` so consecutive schedules of the
        same delivery are monotone even under clock skew.
        """
        candidate = now + timedelta(seconds=self.compute_delay(attempts))
        if previous is not None and candidate <= previous:
            candidate = previous + MIN_STEP
        return candidate
