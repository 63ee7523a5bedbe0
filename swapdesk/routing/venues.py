"""
Simulated liquidity venues.

A venue is anything with a name and async quote()/execute(). The
simulated venue reproduces a price/latency/failure profile; it never
talks to a network.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from swapdesk.config.schema import VenueConfig
from swapdesk.errors import ExecutionError, RoutingError
from swapdesk.ids import new_execution_ref
from swapdesk.routing.types import ExecutionResult, Quote, quantize_amount


class Venue(ABC):
    """Venue interface used by the router."""

    name: str

    @abstractmethod
    async def quote(self, input_token: str, output_token: str, input_amount: Decimal) -> Quote:
        """Price a swap. Raises on failure."""

    @abstractmethod
    async def execute(self, quote: Quote) -> ExecutionResult:
        """Execute a previously issued quote. Raises ExecutionError on failure."""


def _to_decimal(value: float) -> Decimal:
    return Decimal(repr(value))


class SimulatedVenue(Venue):
    """
    Venue driven by a VenueConfig profile.

    - Quote: price = base_price * U(1 - variation, 1 + variation),
      output = input * price * (1 - fee), after quote_delay_ms
    - Execute: fails with probability failure_rate; otherwise realized
      output = quoted output * U(1 - max_slippage, 1 + max_slippage),
      after execution_delay_ms
    """

    def __init__(
        self,
        config: VenueConfig,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = config.name
        self.config = config
        self.fee = _to_decimal(config.fee)
        self._rng = rng or random.Random()
        self._sleep = sleep

    async def quote(self, input_token: str, output_token: str, input_amount: Decimal) -> Quote:
        await self._sleep(self.config.quote_delay_ms / 1000)

        cfg = self.config
        variation = self._rng.uniform(1 - cfg.price_variation, 1 + cfg.price_variation)
        price = _to_decimal(cfg.base_price * variation)
        output_amount = quantize_amount(input_amount * price * (1 - self.fee))
        if output_amount <= 0:
            raise RoutingError(f"{self.name}: quoted output rounds to zero")

        return Quote(
            venue=self.name,
            input_token=input_token,
            output_token=output_token,
            input_amount=input_amount,
            output_amount=output_amount,
            price=price,
            fee=self.fee,
        )

    async def execute(self, quote: Quote) -> ExecutionResult:
        await self._sleep(self.config.execution_delay_ms / 1000)

        if self._rng.random() < self.config.failure_rate:
            raise ExecutionError(f"{self.name}: simulated swap execution failure")

        slippage = self.config.max_slippage
        factor = _to_decimal(self._rng.uniform(1 - slippage, 1 + slippage))

        return ExecutionResult(
            execution_ref=new_execution_ref(self._rng),
            realized_price=quote.price * factor,
            output_amount=quantize_amount(quote.output_amount * factor),
            slippage_percent=abs(1 - factor) * 100,
        )

    def __repr__(self):
        return f"SimulatedVenue(name={self.name!r}, fee={self.fee})"
