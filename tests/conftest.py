# tests/conftest.py
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, List, Optional, Sequence

import pytest

from swapdesk.errors import ExecutionError
from swapdesk.events.bus import OrderEventBus
from swapdesk.execution.pipeline import ExecutionPipeline
from swapdesk.execution.retry import RetryPolicy
from swapdesk.queue.submission import SubmissionQueue
from swapdesk.routing.router import VenueRouter
from swapdesk.routing.types import ExecutionResult, Quote
from swapdesk.routing.venues import Venue
from swapdesk.service import OrderService
from swapdesk.state.order_machine import OrderStateMachine
from swapdesk.state.order_store import OrderStore


# -------------------------
# Fakes used by pipeline tests
# -------------------------

class FixedVenue(Venue):
    """
    Venue with a fixed quote and scripted executions.

    executions: consumed one per execute() call; an Exception instance is
    raised, anything else is ignored and a normal result is returned.
    """

    def __init__(
        self,
        name: str,
        output_amount: Any,
        quote_error: Optional[Exception] = None,
        executions: Sequence[Any] = (),
    ):
        self.name = name
        self.output_amount = Decimal(str(output_amount))
        self.quote_error = quote_error
        self.executions = list(executions)
        self.quote_calls = 0
        self.execute_calls = 0

    async def quote(self, input_token: str, output_token: str, input_amount: Decimal) -> Quote:
        self.quote_calls += 1
        if self.quote_error is not None:
            raise self.quote_error
        return Quote(
            venue=self.name,
            input_token=input_token,
            output_token=output_token,
            input_amount=input_amount,
            output_amount=self.output_amount,
            price=self.output_amount / input_amount,
            fee=Decimal("0"),
        )

    async def execute(self, quote: Quote) -> ExecutionResult:
        self.execute_calls += 1
        if self.executions:
            step = self.executions.pop(0)
            if isinstance(step, Exception):
                raise step
        return ExecutionResult(
            execution_ref=f"{self.execute_calls:064x}",
            realized_price=quote.price,
            output_amount=quote.output_amount,
            slippage_percent=Decimal("0"),
        )


class FailingRouter:
    """Router stand-in whose quote() always raises."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error or ExecutionError("venue unavailable")
        self.quote_calls = 0
        self.venue_names: List[str] = ["Broken"]

    async def quote(self, input_token, output_token, input_amount):
        self.quote_calls += 1
        raise self.error

    async def execute(self, quote):
        raise AssertionError("execute() must not be reached")


async def no_sleep(delay: float) -> None:
    """Drop-in for asyncio.sleep that records nothing and returns at once."""
    await asyncio.sleep(0)


class RecordingSleep:
    """asyncio.sleep replacement remembering the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


# -------------------------
# Fixtures
# -------------------------

@pytest.fixture
def store(tmp_path):
    s = OrderStore(tmp_path / "orders.db")
    yield s
    s.close()


@pytest.fixture
def queue(tmp_path):
    q = SubmissionQueue(tmp_path / "queue.db")
    yield q
    q.close()


@pytest.fixture
def bus():
    return OrderEventBus(max_queue_size=64)


@pytest.fixture
def machine(store, bus):
    return OrderStateMachine(store, bus)


@pytest.fixture
def venues():
    """Raydium beats Meteora: 100 vs 98 for the same input."""
    return [FixedVenue("Raydium", "100"), FixedVenue("Meteora", "98")]


@pytest.fixture
def router(venues):
    return VenueRouter(venues, default_venue="Meteora")


@pytest.fixture
def pipeline(store, machine, router):
    return ExecutionPipeline(store, machine, router)


@pytest.fixture
def service(store, queue, bus, pipeline):
    return OrderService(store, queue, bus, pipeline, RetryPolicy(), sleep=no_sleep)
