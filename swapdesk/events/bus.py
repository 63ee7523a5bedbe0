"""
In-process event bus for order status events.

CRITICAL PROPERTIES:
1. Keyed by order id, plus one global channel for all orders
2. Every subscriber owns a bounded queue (no shared callback list)
3. publish() never blocks: a full subscriber is dropped, not awaited
4. Subscription handles close themselves; close() is idempotent and
   safe from any thread
5. Per-subscriber FIFO: events reach one subscriber in publish order

USAGE:
    bus = OrderEventBus(max_queue_size=64)

    sub = bus.subscribe(order_id)
    async for event in sub:
        ...

    # Producer side (event loop thread):
    bus.publish(StatusEvent(...))

    # Shutdown:
    bus.close_all()
"""

import asyncio
import threading
from typing import Dict, Optional, Set

from swapdesk.events.types import StatusEvent
from swapdesk.logging import get_logger, LogStream


_CLOSED = object()


class Subscription:
    """
    One subscriber's channel.

    Async-iterable; iteration ends once the subscription is closed and its
    buffered events are consumed.
    """

    def __init__(self, bus: "OrderEventBus", order_id: Optional[str], max_size: int):
        self.order_id = order_id
        self._bus = bus
        self._max_size = max_size
        self._loop = asyncio.get_running_loop()
        # Unbounded so the close marker always fits; the bound is enforced in _offer
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending = 0
        self._closed = False
        self._dropped = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dropped(self) -> bool:
        """True if the bus closed this subscription because it fell behind."""
        return self._dropped

    def _offer(self, event: StatusEvent) -> bool:
        """Queue event without blocking. Must run on the subscription's loop."""
        if self._closed:
            return False
        if self._pending >= self._max_size:
            self._dropped = True
            self._bus._drop(self)
            return False
        self._pending += 1
        self._queue.put_nowait(event)
        return True

    async def get(self) -> Optional[StatusEvent]:
        """Next event, or None once closed and drained."""
        if self._finished:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            return None
        self._pending -= 1
        return item

    def __aiter__(self):
        return self

    async def __anext__(self) -> StatusEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        """Unsubscribe. Idempotent; callable from any thread."""
        if not self._bus._unregister(self):
            return

        if self._loop.is_closed():
            return
        if _running_loop() is self._loop:
            self._queue.put_nowait(_CLOSED)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class OrderEventBus:
    """
    Publish/subscribe registry of per-subscriber channels.

    THREAD SAFETY:
    - Registry guarded by a lock; subscribe/close from any thread
    - publish() delivers directly when called on a subscriber's loop and
      hops via call_soon_threadsafe otherwise
    """

    def __init__(self, max_queue_size: int = 64):
        """
        Args:
            max_queue_size: Events buffered per subscriber before it is dropped
        """
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")

        self.logger = get_logger(LogStream.EVENTS)
        self._max_queue_size = max_queue_size

        self._lock = threading.Lock()
        self._by_order: Dict[str, Set[Subscription]] = {}
        self._global: Set[Subscription] = set()

        # Statistics
        self._events_published = 0
        self._events_delivered = 0
        self._subscribers_dropped = 0

        self.logger.info("OrderEventBus initialized", extra={
            "max_queue_size": max_queue_size
        })

    # ========================================================================
    # SUBSCRIBE
    # ========================================================================

    def subscribe(self, order_id: str) -> Subscription:
        """
        Subscribe to one order's status events.

        Must be called from within a running event loop.
        """
        sub = Subscription(self, order_id, self._max_queue_size)
        with self._lock:
            self._by_order.setdefault(order_id, set()).add(sub)

        self.logger.debug("Subscribed", extra={"order_id": order_id})
        return sub

    def subscribe_all(self) -> Subscription:
        """Subscribe to status events of every order."""
        sub = Subscription(self, None, self._max_queue_size)
        with self._lock:
            self._global.add(sub)

        self.logger.debug("Subscribed to all orders")
        return sub

    def _unregister(self, sub: Subscription) -> bool:
        """Remove sub from the registry. False if it was already closed."""
        with self._lock:
            if sub._closed:
                return False
            sub._closed = True

            if sub.order_id is None:
                self._global.discard(sub)
            else:
                subs = self._by_order.get(sub.order_id)
                if subs is not None:
                    subs.discard(sub)
                    if not subs:
                        del self._by_order[sub.order_id]
            return True

    def _drop(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers_dropped += 1

        self.logger.warning(
            "Subscriber queue full, dropping subscriber",
            extra={
                "order_id": sub.order_id,
                "max_queue_size": self._max_queue_size,
            }
        )
        sub.close()

    # ========================================================================
    # PUBLISH
    # ========================================================================

    def publish(self, event: StatusEvent) -> int:
        """
        Deliver event to the order's subscribers and the global channel.

        Never blocks and never raises on subscriber problems.

        Returns:
            Number of subscribers the event was handed to
        """
        with self._lock:
            targets = list(self._by_order.get(event.order_id, ())) + list(self._global)
            self._events_published += 1

        current = _running_loop()
        delivered = 0

        for sub in targets:
            if sub._loop is current:
                if sub._offer(event):
                    delivered += 1
            elif not sub._loop.is_closed():
                sub._loop.call_soon_threadsafe(sub._offer, event)
                delivered += 1

        with self._lock:
            self._events_delivered += delivered

        self.logger.debug(
            f"Published {event.status.value}",
            extra={
                "order_id": event.order_id,
                "status": event.status.value,
                "subscribers": delivered,
            }
        )
        return delivered

    # ========================================================================
    # LIFECYCLE / INTROSPECTION
    # ========================================================================

    def subscriber_count(self, order_id: Optional[str] = None) -> int:
        """Live subscriptions for order_id, or all of them when None."""
        with self._lock:
            if order_id is not None:
                return len(self._by_order.get(order_id, ()))
            return len(self._global) + sum(len(s) for s in self._by_order.values())

    def close_all(self) -> int:
        """Close every live subscription. Returns how many were closed."""
        with self._lock:
            subs = list(self._global)
            for order_subs in self._by_order.values():
                subs.extend(order_subs)

        for sub in subs:
            sub.close()

        self.logger.info("All subscriptions closed", extra={"count": len(subs)})
        return len(subs)

    def get_stats(self) -> Dict:
        """
        Get event bus statistics.

        Returns:
            Dict with published, delivered, dropped, active subscriptions
        """
        with self._lock:
            active = len(self._global) + sum(len(s) for s in self._by_order.values())
            return {
                "events_published": self._events_published,
                "events_delivered": self._events_delivered,
                "subscribers_dropped": self._subscribers_dropped,
                "active_subscriptions": active,
                "orders_watched": len(self._by_order),
            }
