"""Retry policy for fiscal document submissions.

The submission coordinator does not loop in-process: every failed attempt is
persisted (``retry_count``, ``last_retry_at``) and the next attempt is handed to
a :class:`~opensri.core.submission.scheduler.RetryScheduler` with the delay
computed here. The policy is an explicit object injected into the coordinator,
so tests and deployments can tune limits without touching global state.

Usage:
    policy = RetryPolicy(max_retries=12, base_delay=300.0)
    policy.delay_for(1)   # 300.0
    policy.delay_for(3)   # 1200.0
    policy.delay_for(20)  # capped at max_delay

    # Custom backoff curve (e.g. a fixed schedule in seconds)
    schedule = [0, 300, 900, 1800, 3600]
    policy = RetryPolicy(backoff=lambda n: schedule[min(n - 1, len(schedule) - 1)])
"""

import random
from collections.abc import Callable
from dataclasses import dataclass

from opensri.utils.config import Settings
from opensri.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for submission retries.

    Attributes:
        max_retries: Failures allowed before a document is definitively failed (default: 12)
        base_delay: Delay in seconds before the first retry (default: 300 = 5 min)
        max_delay: Maximum delay in seconds between retries (default: 57600 = 16 h)
        backoff_factor: Exponential backoff multiplier (default: 2.0)
        jitter: Whether to add random jitter to delays (default: False)
        jitter_range: Range for jitter as fraction of delay (default: 0.1 = ±10%)
        backoff: Optional callable ``retry_count -> seconds`` replacing the
            exponential curve. Its result is still clamped to ``max_delay``.
    """

    max_retries: int = 12
    base_delay: float = 300.0
    max_delay: float = 57600.0
    backoff_factor: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.1
    backoff: Callable[[int], float] | None = None

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError("jitter_range must be between 0 and 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build the policy from application settings."""
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
        )

    def can_retry(self, retry_count: int) -> bool:
        """Whether a document with ``retry_count`` failures may be resubmitted."""
        return retry_count < self.max_retries

    def delay_for(self, retry_count: int) -> float:
        """Calculate the delay before the retry following failure number ``retry_count``.

        Args:
            retry_count: Number of failures recorded so far (1-indexed)

        Returns:
            Delay in seconds, non-decreasing in ``retry_count`` and bounded by ``max_delay``
        """
        attempt = max(retry_count - 1, 0)

        if self.backoff is not None:
            delay = min(max(float(self.backoff(retry_count)), 0.0), self.max_delay)
        else:
            # Exponential backoff: delay = base_delay * (backoff_factor ^ attempt)
            delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


DEFAULT_RETRY_POLICY = RetryPolicy()
