"""
Rate limiting and backoff for venue-facing work.

Sliding-window limiter keyed by limit id, plus exponential backoff used
by the execution retry policy.
"""

import asyncio
import time
from collections import deque, defaultdict
from dataclasses import dataclass
from typing import Dict, Callable, Optional

from swapdesk.logging import get_logger, LogStream

logger = get_logger(LogStream.QUEUE)

# Limit id the execution worker acquires once per job
EXECUTION_LIMIT_ID = "executions"


@dataclass
class RateLimit:
    """Rate limit configuration"""
    max_requests: int  # Maximum requests
    time_window: float  # Time window in seconds

    def __str__(self):
        return f"{self.max_requests} requests per {self.time_window}s"


class Throttler:
    """
    Sliding-window rate limiter.

    Usage:
        throttler = Throttler({
            'executions': RateLimit(100, 60.0),  # 100/min
        })

        # Take a slot before each execution:
        await throttler.acquire('executions')
    """

    def __init__(self, rate_limits: Dict[str, RateLimit], clock: Callable[[], float] = time.monotonic):
        """
        Args:
            rate_limits: Dict mapping limit_id to RateLimit config
            clock: Monotonic seconds source
        """
        self._rate_limits = rate_limits
        self._clock = clock
        self._request_times: Dict[str, deque] = defaultdict(deque)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

        # Statistics
        self._total_requests: Dict[str, int] = defaultdict(int)
        self._total_waits: Dict[str, int] = defaultdict(int)
        self._total_wait_time: Dict[str, float] = defaultdict(float)

        for limit_id, limit in rate_limits.items():
            logger.info(f"Throttler limit {limit_id}: {limit}")

    async def acquire(self, limit_id: str) -> float:
        """
        Take one slot for limit_id, sleeping until one is free.

        Returns:
            Time waited in seconds
        """
        async with self._locks[limit_id]:
            waited = await self._wait_if_needed(limit_id)
            self._request_times[limit_id].append(self._clock())
            self._total_requests[limit_id] += 1
            return waited

    async def _wait_if_needed(self, limit_id: str) -> float:
        """
        Wait if at rate limit.

        Returns:
            Time waited in seconds (0 if no wait)
        """
        if limit_id not in self._rate_limits:
            # No limit defined, allow immediately
            return 0.0

        limit = self._rate_limits[limit_id]
        request_times = self._request_times[limit_id]
        waited = 0.0

        while True:
            # Remove old requests outside time window
            now = self._clock()
            cutoff_time = now - limit.time_window
            while request_times and request_times[0] <= cutoff_time:
                request_times.popleft()

            if len(request_times) < limit.max_requests:
                return waited

            wait_time = (request_times[0] + limit.time_window) - now
            if wait_time <= 0:
                continue

            logger.warning(
                f"Rate limit reached for {limit_id}, waiting {wait_time:.2f}s",
                extra={
                    'limit_id': limit_id,
                    'wait_time': wait_time,
                    'limit': str(limit),
                    'current_requests': len(request_times)
                }
            )

            self._total_waits[limit_id] += 1
            self._total_wait_time[limit_id] += wait_time

            await asyncio.sleep(wait_time)
            waited += wait_time

    def get_stats(self, limit_id: Optional[str] = None) -> Dict:
        """
        Get throttling statistics.

        Args:
            limit_id: Specific limit to get stats for, or None for all
        """
        if limit_id:
            return {
                'limit_id': limit_id,
                'limit': str(self._rate_limits.get(limit_id, 'No limit')),
                'total_requests': self._total_requests[limit_id],
                'total_waits': self._total_waits[limit_id],
                'total_wait_time': self._total_wait_time[limit_id],
                'avg_wait_time': (
                    self._total_wait_time[limit_id] / self._total_waits[limit_id]
                    if self._total_waits[limit_id] > 0
                    else 0.0
                ),
                'current_window_requests': len(self._request_times[limit_id])
            }
        return {
            lid: self.get_stats(lid)
            for lid in self._rate_limits.keys()
        }


class ExponentialBackoff:
    """
    Exponential backoff for retry logic.

    Usage:
        backoff = ExponentialBackoff(base=1.0, max_delay=60.0)

        for attempt in range(max_retries):
            try:
                result = await some_call()
                break
            except TransientError:
                await asyncio.sleep(backoff.next_delay(attempt))
    """

    def __init__(
        self,
        base: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
    ):
        """
        Args:
            base: Base delay in seconds
            multiplier: Exponential multiplier
            max_delay: Maximum delay cap
        """
        self.base = base
        self.multiplier = multiplier
        self.max_delay = max_delay

    def next_delay(self, attempt: int) -> float:
        """
        Calculate next delay.

        Args:
            attempt: Attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(self.base * (self.multiplier ** attempt), self.max_delay)
        return max(0.0, delay)
