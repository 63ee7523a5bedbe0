"""Rate limiting and backoff primitives."""

from .throttler import RateLimit, Throttler, ExponentialBackoff, EXECUTION_LIMIT_ID

__all__ = [
    "RateLimit",
    "Throttler",
    "ExponentialBackoff",
    "EXECUTION_LIMIT_ID",
]
