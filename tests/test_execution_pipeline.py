"""
End-to-end order execution in the caller's task.

INVARIANT:
    A submitted order walks pending -> routing -> building -> submitted ->
    confirmed, with venue, output and execution reference recorded on
    confirmation. Only one trigger per order proceeds. Transient failures
    are retried with backoff up to the attempt limit, re-quoting each time,
    and then the order ends FAILED with the last error. Subscribers see a
    strictly forward sequence ending in exactly one terminal status.
"""

import asyncio
import random
from decimal import Decimal

import pytest

from swapdesk.config.schema import ConfigSchema
from swapdesk.errors import ExecutionError, InvalidStateError, OrderNotFoundError, ValidationError
from swapdesk.events.bus import OrderEventBus
from swapdesk.execution.pipeline import ExecutionPipeline
from swapdesk.execution.retry import RetryPolicy
from swapdesk.queue.submission import SubmissionQueue
from swapdesk.routing.router import VenueRouter, create_router
from swapdesk.service import OrderService
from swapdesk.state.order import OrderStatus
from swapdesk.state.order_machine import OrderStateMachine

from tests.conftest import FailingRouter, FixedVenue, RecordingSleep, no_sleep


def _service(store, queue, router, sleep=no_sleep, policy=None):
    bus = OrderEventBus()
    machine = OrderStateMachine(store, bus)
    pipeline = ExecutionPipeline(store, machine, router)
    return OrderService(store, queue, bus, pipeline, policy or RetryPolicy(), sleep=sleep)


class TestSuccessfulExecution:

    @pytest.mark.parametrize("amount", ["0.000001", "999999999999999.999999999"])
    def test_amount_bounds_confirm_on_simulated_venues(self, store, queue, amount):
        config = ConfigSchema.model_validate({"venues": [
            {"name": "Raydium", "fee": 0.003, "failure_rate": 0.0},
            {"name": "Meteora", "fee": 0.002, "failure_rate": 0.0},
        ]})
        service = _service(store, queue, create_router(config, rng=random.Random(5), sleep=no_sleep))

        async def run():
            order = await service.submit("w1", "SOL", "USDC", amount)
            return await service.execute(order.order_id)

        order = asyncio.run(run())
        assert order.status == OrderStatus.CONFIRMED
        assert order.output_amount > 0
        assert order.error is None

    def test_best_venue_confirmed(self, service, venues):
        async def run():
            order = await service.submit("w1", "SOL", "USDC", 10)
            assert order.status == OrderStatus.PENDING
            assert (order.selected_venue, order.output_amount, order.execution_ref, order.error) == (None,) * 4
            return await service.execute(order.order_id)

        order = asyncio.run(run())
        assert order.status == OrderStatus.CONFIRMED
        assert order.selected_venue == "Raydium"
        assert order.output_amount == Decimal("100")
        assert order.execution_ref is not None and len(order.execution_ref) == 64
        assert order.error is None
        assert venues[0].execute_calls == 1

    def test_subscriber_sees_forward_sequence(self, service):
        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            sub = service.event_bus.subscribe(order.order_id)
            await service.execute(order.order_id)
            sub.close()
            return [e async for e in sub]

        events = asyncio.run(run())
        statuses = [e.status for e in events]
        assert statuses == [
            OrderStatus.ROUTING,
            OrderStatus.BUILDING,
            OrderStatus.SUBMITTED,
            OrderStatus.CONFIRMED,
        ]
        ranks = [s.rank for s in statuses]
        assert ranks == sorted(set(ranks))
        assert events[-1].venue == "Raydium"
        assert events[-1].execution_ref is not None

    def test_submit_and_enqueue_announces_pending(self, service, queue):
        async def run():
            sub = service.event_bus.subscribe_all()
            order = await service.submit_and_enqueue("w1", "SOL", "USDC", "10")
            sub.close()
            return order, [e async for e in sub]

        order, events = asyncio.run(run())
        assert [e.status for e in events] == [OrderStatus.PENDING]
        job = queue.get(order.order_id)
        assert job is not None
        assert job.payload["inputAmount"] == "10"


class TestTriggerGuards:

    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFoundError):
            asyncio.run(service.execute("missing"))

    def test_invalid_input_creates_nothing(self, service, store):
        with pytest.raises(ValidationError):
            asyncio.run(service.submit("w1", "SOL", "SOL", "1"))
        assert store.list_by_wallet("w1") == []

    @pytest.mark.parametrize("amount", ["1e20", "1e15", "1e-12"])
    def test_unquotable_amount_rejected_at_submit(self, service, store, amount):
        with pytest.raises(ValidationError) as exc:
            asyncio.run(service.submit("w1", "SOL", "USDC", amount))
        assert exc.value.field == "input_amount"
        assert store.list_by_wallet("w1") == []

    def test_concurrent_execute_exactly_one_wins(self, service, venues):
        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            return await asyncio.gather(
                service.execute(order.order_id),
                service.execute(order.order_id),
                return_exceptions=True,
            )

        results = asyncio.run(run())
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]

        assert len(winners) == 1
        assert winners[0].status == OrderStatus.CONFIRMED
        assert len(losers) == 1
        assert isinstance(losers[0], InvalidStateError)
        assert venues[0].execute_calls == 1

    def test_execute_confirmed_order_rejected(self, service):
        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            await service.execute(order.order_id)
            await service.execute(order.order_id)

        with pytest.raises(InvalidStateError):
            asyncio.run(run())

    def test_enqueue_execute_requires_pending(self, service):
        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            assert await service.enqueue_execute(order.order_id) is True
            assert await service.enqueue_execute(order.order_id) is False
            await service.execute(order.order_id)
            await service.enqueue_execute(order.order_id)

        with pytest.raises(InvalidStateError):
            asyncio.run(run())


class TestRetries:

    def test_three_failures_mark_failed(self, store, queue):
        router = FailingRouter(ExecutionError("venue unavailable"))
        sleep = RecordingSleep()
        service = _service(store, queue, router, sleep=sleep)

        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            sub = service.event_bus.subscribe(order.order_id)
            final = await service.execute(order.order_id)
            sub.close()
            return final, [e async for e in sub]

        order, events = asyncio.run(run())
        assert router.quote_calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert order.status == OrderStatus.FAILED
        assert "venue unavailable" in order.error

        statuses = [e.status for e in events]
        assert statuses == [OrderStatus.ROUTING, OrderStatus.FAILED]
        assert events[-1].error == order.error

    def test_execution_failure_then_success(self, store, queue):
        venue = FixedVenue("Raydium", "100", executions=[ExecutionError("slot missed")])
        router = VenueRouter([venue, FixedVenue("Meteora", "98")], default_venue="Meteora")
        service = _service(store, queue, router)

        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            sub = service.event_bus.subscribe(order.order_id)
            final = await service.execute(order.order_id)
            sub.close()
            return final, [e.status async for e in sub]

        order, statuses = asyncio.run(run())
        assert order.status == OrderStatus.CONFIRMED
        assert venue.quote_calls == 2
        assert venue.execute_calls == 2
        # Resumed from SUBMITTED: no status is published twice
        assert statuses == [
            OrderStatus.ROUTING,
            OrderStatus.BUILDING,
            OrderStatus.SUBMITTED,
            OrderStatus.CONFIRMED,
        ]

    def test_single_attempt_policy(self, store, queue):
        router = FailingRouter()
        service = _service(store, queue, router, policy=RetryPolicy(max_attempts=1))

        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            return await service.execute(order.order_id)

        assert asyncio.run(run()).status == OrderStatus.FAILED
        assert router.quote_calls == 1

    def test_unknown_venue_not_retried(self, store, queue):
        class _MisconfiguredRouter:
            """Quotes a venue its executor was never given."""

            def __init__(self):
                self.quoting = VenueRouter([FixedVenue("Orca", "100")])
                self.executing = VenueRouter([FixedVenue("Raydium", "1")])
                self.quote_calls = 0

            async def quote(self, input_token, output_token, input_amount):
                self.quote_calls += 1
                return await self.quoting.quote(input_token, output_token, input_amount)

            async def execute(self, quote):
                return await self.executing.execute(quote)

        router = _MisconfiguredRouter()
        service = _service(store, queue, router)

        async def run():
            order = await service.submit("w1", "SOL", "USDC", "10")
            return await service.execute(order.order_id)

        order = asyncio.run(run())
        assert order.status == OrderStatus.FAILED
        assert "Orca" in order.error
        assert router.quote_calls == 1


class TestQueries:

    def test_list_by_wallet_clamps_limit(self, service):
        async def run():
            for _ in range(3):
                await service.submit("w1", "SOL", "USDC", "1")
            return (
                await service.list_by_wallet("w1", limit=0),
                await service.list_by_wallet("w1", limit=10_000),
            )

        smallest, largest = asyncio.run(run())
        assert len(smallest) == 1
        assert len(largest) == 3

    def test_list_by_wallet_matches_stored_wallet(self, service):
        async def run():
            order = await service.submit(" w1 ", "SOL", "USDC", "1")
            return order, await service.list_by_wallet("w1 ")

        order, listed = asyncio.run(run())
        assert order.wallet == "w1"
        assert [o.order_id for o in listed] == [order.order_id]

    def test_get_returns_snapshot(self, service):
        async def run():
            order = await service.submit("w1", "sol", "usdc", "2.5")
            return await service.get(order.order_id)

        order = asyncio.run(run())
        assert (order.input_token, order.output_token) == ("SOL", "USDC")
        assert order.to_dict()["inputAmount"] == "2.5"
