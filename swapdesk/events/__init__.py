"""Status events and the order event bus."""

from .types import StatusEvent
from .bus import OrderEventBus, Subscription

__all__ = [
    "StatusEvent",
    "OrderEventBus",
    "Subscription",
]
