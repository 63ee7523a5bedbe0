"""Quotes, execution results and routing decisions. All ephemeral."""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Any, Dict, Optional, Tuple

from swapdesk.state.order import AMOUNT_QUANTUM

UNDEFINED_PERCENT = Decimal("NaN")


def quantize_amount(value: Decimal) -> Decimal:
    """Round down to AMOUNT_QUANTUM, widening precision for large values."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 1 - AMOUNT_QUANTUM.as_tuple().exponent)
        return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class Quote:
    """A venue's offer for one swap."""
    venue: str
    input_token: str
    output_token: str
    input_amount: Decimal
    output_amount: Decimal
    price: Decimal
    fee: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue": self.venue,
            "inputToken": self.input_token,
            "outputToken": self.output_token,
            "inputAmount": str(self.input_amount),
            "outputAmount": str(self.output_amount),
            "price": str(self.price),
            "fee": str(self.fee),
        }


@dataclass(frozen=True)
class ExecutionResult:
    """What a venue actually did with a quote."""
    execution_ref: str
    realized_price: Decimal
    output_amount: Decimal
    slippage_percent: Decimal  # absolute, in percent


@dataclass(frozen=True)
class RouteDecision:
    """
    Outcome of comparing venue quotes.

    price_difference_percent is NaN when undefined (no alternative, or the
    alternative offered zero output).
    """
    selected: Quote
    alternative: Optional[Quote]
    price_difference: Decimal
    price_difference_percent: Decimal
    quotes: Tuple[Quote, ...] = field(default=())

    @property
    def price_difference_percent_defined(self) -> bool:
        return not self.price_difference_percent.is_nan()
