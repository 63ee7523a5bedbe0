"""Retry policy for order execution attempts."""

from dataclasses import dataclass
from typing import Optional

from swapdesk.config.schema import WorkerConfig
from swapdesk.errors import SwapDeskError, TransientError
from swapdesk.net.throttler import ExponentialBackoff


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times an order is attempted and how long to wait between.

    Attempts are 1-based. With the defaults the waits after attempts 1
    and 2 are 1s and 2s, and attempt 3 is the last.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1: {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0: {self.base_delay}")
        if self.multiplier < 1:
            raise ValueError(f"multiplier must be >= 1: {self.multiplier}")

    @classmethod
    def from_config(cls, config: WorkerConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            multiplier=config.backoff_multiplier,
            max_delay=config.max_delay_seconds,
        )

    def is_retryable(self, error: BaseException) -> bool:
        """Transient pipeline errors and unexpected exceptions are retried."""
        if isinstance(error, TransientError):
            return True
        return isinstance(error, Exception) and not isinstance(error, SwapDeskError)

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        return attempt < self.max_attempts and self.is_retryable(error)

    def delay_for(self, attempt: int) -> Optional[float]:
        """Seconds to wait after a failed attempt, or None if it was the last."""
        if attempt >= self.max_attempts:
            return None
        backoff = ExponentialBackoff(
            base=self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
        )
        return backoff.next_delay(attempt - 1)
