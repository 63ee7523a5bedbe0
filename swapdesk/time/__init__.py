"""Time abstraction layer"""

from .clock import Clock, RealTimeClock, ManualClock, ensure_utc

__all__ = [
    'Clock',
    'RealTimeClock',
    'ManualClock',
    'ensure_utc',
]
