"""
Order event bus.

INVARIANT:
    Every subscriber owns its channel and sees events in publish order.
    Publishing never blocks: a subscriber that falls behind is dropped and
    its stream ends, while other subscribers keep receiving. close() is
    idempotent and works from any thread.
"""

import asyncio
import threading
from datetime import datetime, timezone

from swapdesk.events.bus import OrderEventBus
from swapdesk.events.types import StatusEvent
from swapdesk.state.order import OrderStatus


T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _event(order_id, status, **payload):
    return StatusEvent(order_id=order_id, status=status, timestamp=T0, **payload)


async def _drain(sub):
    return [e async for e in sub]


class TestDelivery:

    def test_per_order_channel(self):
        bus = OrderEventBus()

        async def run():
            a = bus.subscribe("a")
            b = bus.subscribe("b")
            bus.publish(_event("a", OrderStatus.ROUTING))
            bus.publish(_event("b", OrderStatus.BUILDING))
            a.close()
            b.close()
            return await _drain(a), await _drain(b)

        got_a, got_b = asyncio.run(run())
        assert [e.order_id for e in got_a] == ["a"]
        assert [e.status for e in got_b] == [OrderStatus.BUILDING]

    def test_global_channel_sees_all_orders(self):
        bus = OrderEventBus()

        async def run():
            sub = bus.subscribe_all()
            assert bus.publish(_event("a", OrderStatus.ROUTING)) == 1
            assert bus.publish(_event("b", OrderStatus.ROUTING)) == 1
            sub.close()
            return await _drain(sub)

        assert [e.order_id for e in asyncio.run(run())] == ["a", "b"]

    def test_publish_order_preserved(self):
        bus = OrderEventBus()
        sequence = [OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED, OrderStatus.CONFIRMED]

        async def run():
            sub = bus.subscribe("o-1")
            for status in sequence:
                bus.publish(_event("o-1", status))
            sub.close()
            return await _drain(sub)

        assert [e.status for e in asyncio.run(run())] == sequence

    def test_publish_without_subscribers(self):
        bus = OrderEventBus()
        assert bus.publish(_event("nobody", OrderStatus.ROUTING)) == 0
        assert bus.get_stats()["events_published"] == 1


class TestSlowSubscriber:

    def test_full_subscriber_dropped_others_unaffected(self):
        bus = OrderEventBus(max_queue_size=2)

        async def run():
            slow = bus.subscribe("o-1")
            fast = bus.subscribe("o-1")
            received = []

            for status in (OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED):
                bus.publish(_event("o-1", status))
                received.append(await fast.get())

            fast.close()
            return slow, await _drain(slow), received

        slow, slow_events, fast_events = asyncio.run(run())
        assert slow.dropped
        assert slow.closed
        assert [e.status for e in slow_events] == [OrderStatus.ROUTING, OrderStatus.BUILDING]
        assert [e.status for e in fast_events] == [
            OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED,
        ]
        assert bus.get_stats()["subscribers_dropped"] == 1


class TestLifecycle:

    def test_close_is_idempotent(self):
        bus = OrderEventBus()

        async def run():
            sub = bus.subscribe("o-1")
            sub.close()
            sub.close()
            assert await sub.get() is None
            assert await sub.get() is None

        asyncio.run(run())
        assert bus.subscriber_count() == 0

    def test_close_from_another_thread_ends_iteration(self):
        bus = OrderEventBus()

        async def run():
            sub = bus.subscribe("o-1")
            threading.Timer(0.05, sub.close).start()
            return await asyncio.wait_for(_drain(sub), timeout=2)

        assert asyncio.run(run()) == []

    def test_close_all(self):
        bus = OrderEventBus()

        async def run():
            subs = [bus.subscribe("a"), bus.subscribe("b"), bus.subscribe_all()]
            assert bus.subscriber_count() == 3
            assert bus.subscriber_count("a") == 1
            assert bus.close_all() == 3
            return [await _drain(s) for s in subs]

        assert asyncio.run(run()) == [[], [], []]
        stats = bus.get_stats()
        assert stats["active_subscriptions"] == 0
        assert stats["orders_watched"] == 0

    def test_context_manager_unsubscribes(self):
        bus = OrderEventBus()

        async def run():
            with bus.subscribe("o-1"):
                assert bus.subscriber_count("o-1") == 1
            return bus.subscriber_count("o-1")

        assert asyncio.run(run()) == 0


class TestStatusEventMessage:

    def test_message_without_payload(self):
        message = _event("o-1", OrderStatus.ROUTING).to_message()
        assert message == {
            "type": "status",
            "orderId": "o-1",
            "status": "routing",
            "timestamp": T0.isoformat(),
        }

    def test_message_with_payload(self):
        message = _event("o-1", OrderStatus.FAILED, error="venue down").to_message()
        assert message["status"] == "failed"
        assert message["data"]["error"] == "venue down"
        assert message["data"]["venue"] is None
