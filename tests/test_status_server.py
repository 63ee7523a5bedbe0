"""
WebSocket status endpoint.

INVARIANT:
    ws://host:port/orders/{id} sends a snapshot first, then live statuses,
    and the server closes the connection after the terminal status. An
    unknown order gets one error message, never an exception.
"""

import asyncio

import pytest

from swapdesk.config import ConfigSchema
from swapdesk.di import Container
from swapdesk.realtime import parse_order_path, watch_order
from swapdesk.routing.router import VenueRouter

from tests.conftest import FixedVenue


@pytest.fixture
def container(tmp_path):
    config = ConfigSchema.model_validate({
        "store": {"db_path": str(tmp_path / "orders.db")},
        "queue": {"db_path": str(tmp_path / "queue.db")},
        "stream": {"host": "127.0.0.1", "port": 0},
        "logging": {"file_logging": False},
    })
    router = VenueRouter([FixedVenue("Raydium", "100"), FixedVenue("Meteora", "98")], default_venue="Meteora")
    c = Container(router=router)
    c.initialize(config)
    return c


async def _collect(url, order_id, on_first=None):
    messages = []
    async for message in watch_order(url, order_id):
        messages.append(message)
        if on_first is not None and len(messages) == 1:
            await on_first()
    return messages


class TestPathParsing:

    @pytest.mark.parametrize("path,expected", [
        ("/orders/abc", "abc"),
        ("/orders/abc/", "abc"),
        ("/orders/abc?x=1", "abc"),
        ("/orders/", None),
        ("/orders/a/b", None),
        ("/status/abc", None),
    ])
    def test_parse(self, path, expected):
        assert parse_order_path(path) == expected


class TestStatusServer:

    def test_unknown_order_gets_error(self, container):
        async def run():
            await container.start(run_worker=False, serve_stream=True)
            try:
                url = f"ws://127.0.0.1:{container.get_status_server().bound_port}"
                return await asyncio.wait_for(_collect(url, "missing"), timeout=5)
            finally:
                await container.shutdown()

        assert asyncio.run(run()) == [{"type": "error", "message": "Order not found"}]

    def test_live_updates_until_terminal(self, container):
        service = container.get_service()
        tasks = []

        async def run():
            await container.start(run_worker=False, serve_stream=True)
            try:
                url = f"ws://127.0.0.1:{container.get_status_server().bound_port}"
                order = await service.submit("w1", "SOL", "USDC", "10")

                async def trigger():
                    tasks.append(asyncio.create_task(service.execute(order.order_id)))

                messages = await asyncio.wait_for(_collect(url, order.order_id, trigger), timeout=5)
                await asyncio.gather(*tasks)
                return messages
            finally:
                await container.shutdown()

        messages = asyncio.run(run())
        assert [m["status"] for m in messages] == [
            "pending", "routing", "building", "submitted", "confirmed",
        ]
        assert all(m["type"] == "status" for m in messages)
        assert messages[-1]["data"]["venue"] == "Raydium"
        assert container.get_status_server().get_stats()["connections_total"] == 1

    def test_finished_order_single_snapshot(self, container):
        service = container.get_service()

        async def run():
            await container.start(run_worker=False, serve_stream=True)
            try:
                url = f"ws://127.0.0.1:{container.get_status_server().bound_port}"
                order = await service.submit("w1", "SOL", "USDC", "10")
                await service.execute(order.order_id)
                return await asyncio.wait_for(_collect(url, order.order_id), timeout=5)
            finally:
                await container.shutdown()

        messages = asyncio.run(run())
        assert len(messages) == 1
        assert messages[0]["status"] == "confirmed"
