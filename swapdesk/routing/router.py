"""
Venue router: concurrent quotes, best-price selection, dispatch.

SELECTION RULES:
- Highest output amount wins
- Ties go to the configured default venue, then to configuration order
- Alternative = best of the remaining quotes
- price_difference_percent = (selected - alternative) / alternative * 100,
  NaN when there is no alternative or it offered zero
"""

import asyncio
import random
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from swapdesk.config.schema import ConfigSchema
from swapdesk.errors import ExecutionError, RoutingError, SwapDeskError, UnknownVenueError
from swapdesk.logging import get_logger, LogStream, log_performance
from swapdesk.routing.types import ExecutionResult, Quote, RouteDecision, UNDEFINED_PERCENT
from swapdesk.routing.venues import SimulatedVenue, Venue


class VenueRouter:
    """
    Routes swaps across a fixed set of venues.

    USAGE:
        router = VenueRouter([raydium, meteora], default_venue="Meteora")

        decision = await router.quote("SOL", "USDC", Decimal("10"))
        result = await router.execute(decision.selected)
    """

    def __init__(
        self,
        venues: Sequence[Venue],
        default_venue: Optional[str] = None,
        tolerate_venue_failures: bool = False,
    ):
        """
        Args:
            venues: Venues in configuration order (at least one)
            default_venue: Preferred venue when outputs tie
            tolerate_venue_failures: Route with surviving venues when some quotes fail
        """
        if not venues:
            raise ValueError("VenueRouter needs at least one venue")

        self._venues: Dict[str, Venue] = {}
        for venue in venues:
            if venue.name in self._venues:
                raise ValueError(f"Duplicate venue: {venue.name}")
            self._venues[venue.name] = venue

        if default_venue is not None and default_venue not in self._venues:
            raise ValueError(f"Default venue {default_venue} is not configured")

        self._order = {name: i for i, name in enumerate(self._venues)}
        self.default_venue = default_venue
        self.tolerate_venue_failures = tolerate_venue_failures
        self.logger = get_logger(LogStream.ROUTING)

    @property
    def venue_names(self) -> List[str]:
        return list(self._venues)

    # ========================================================================
    # QUOTING
    # ========================================================================

    @log_performance(LogStream.ROUTING)
    async def quote(self, input_token: str, output_token: str, input_amount: Decimal) -> RouteDecision:
        """
        Quote every venue concurrently and pick the best.

        Raises:
            RoutingError: A venue failed (or every venue failed, when tolerant)
        """
        self.logger.info("Fetching quotes from all venues", extra={
            "input_token": input_token,
            "output_token": output_token,
            "input_amount": str(input_amount),
            "venues": self.venue_names,
        })

        venues = list(self._venues.values())
        results = await asyncio.gather(
            *(v.quote(input_token, output_token, input_amount) for v in venues),
            return_exceptions=True,
        )

        quotes: List[Quote] = []
        failures: List[Tuple[str, BaseException]] = []
        for venue, result in zip(venues, results):
            if isinstance(result, Exception):
                failures.append((venue.name, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                quotes.append(result)

        for name, exc in failures:
            self.logger.warning(f"Quote failed on {name}: {exc}", extra={
                "venue": name,
                "error_type": type(exc).__name__,
            })

        if failures and not self.tolerate_venue_failures:
            name, exc = failures[0]
            raise RoutingError(f"Quote failed on {name}: {exc}") from exc

        if not quotes:
            raise RoutingError("No venue returned a quote")

        decision = self.select(quotes)

        self.logger.info(
            f"Selected {decision.selected.venue}: {decision.selected.output_amount} {output_token}",
            extra={
                "selected_venue": decision.selected.venue,
                "selected_output": str(decision.selected.output_amount),
                "alternative_venue": decision.alternative.venue if decision.alternative else None,
                "alternative_output": (
                    str(decision.alternative.output_amount) if decision.alternative else None
                ),
                "difference": str(decision.price_difference),
                "difference_percent": (
                    str(decision.price_difference_percent)
                    if decision.price_difference_percent_defined else None
                ),
                "quotes": [q.to_dict() for q in decision.quotes],
            }
        )
        return decision

    def select(self, quotes: Sequence[Quote]) -> RouteDecision:
        """Pick the best quote and its runner-up."""
        if not quotes:
            raise RoutingError("No quotes to select from")

        ranked = sorted(quotes, key=self._rank_key)
        selected = ranked[0]
        alternative = ranked[1] if len(ranked) > 1 else None

        if alternative is None:
            return RouteDecision(
                selected=selected,
                alternative=None,
                price_difference=Decimal("0"),
                price_difference_percent=UNDEFINED_PERCENT,
                quotes=tuple(quotes),
            )

        difference = selected.output_amount - alternative.output_amount
        if alternative.output_amount == 0:
            percent = UNDEFINED_PERCENT
        else:
            percent = difference / alternative.output_amount * 100

        return RouteDecision(
            selected=selected,
            alternative=alternative,
            price_difference=difference,
            price_difference_percent=percent,
            quotes=tuple(quotes),
        )

    def _rank_key(self, quote: Quote):
        # Higher output first, then the default venue, then configuration order
        return (
            -quote.output_amount,
            0 if quote.venue == self.default_venue else 1,
            self._order.get(quote.venue, len(self._order)),
        )

    # ========================================================================
    # EXECUTION
    # ========================================================================

    @log_performance(LogStream.ROUTING)
    async def execute(self, quote: Quote) -> ExecutionResult:
        """
        Execute quote on the venue it names.

        Raises:
            UnknownVenueError: Venue not configured (fatal, not retried)
            ExecutionError: Venue failed (transient)
        """
        venue = self._venues.get(quote.venue)
        if venue is None:
            raise UnknownVenueError(quote.venue)

        self.logger.info(f"Executing swap on {quote.venue}", extra={
            "venue": quote.venue,
            "input_token": quote.input_token,
            "output_token": quote.output_token,
            "input_amount": str(quote.input_amount),
            "expected_output": str(quote.output_amount),
        })

        try:
            result = await venue.execute(quote)
        except SwapDeskError:
            raise
        except Exception as e:
            raise ExecutionError(f"{quote.venue}: {e}") from e

        self.logger.info(f"Swap executed on {quote.venue}", extra={
            "venue": quote.venue,
            "execution_ref": result.execution_ref,
            "output_amount": str(result.output_amount),
            "slippage_percent": str(result.slippage_percent),
        })
        return result


def create_router(config: ConfigSchema, rng: Optional[random.Random] = None, sleep=asyncio.sleep) -> VenueRouter:
    """
    Build a router of simulated venues from configuration.

    One Random instance is shared by all venues; seeded from
    config.router.seed when no rng is passed.
    """
    if rng is None:
        rng = random.Random(config.router.seed)

    venues = [SimulatedVenue(vc, rng=rng, sleep=sleep) for vc in config.venues]
    return VenueRouter(
        venues,
        default_venue=config.router.default_venue,
        tolerate_venue_failures=config.router.tolerate_venue_failures,
    )
