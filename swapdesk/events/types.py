"""
Status events broadcast on every order transition.

Events are ephemeral: never persisted, only published. Frozen so no
subscriber can alter what another subscriber sees.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from swapdesk.state.order import Order, OrderStatus


@dataclass(frozen=True)
class StatusEvent:
    """One published status of one order."""
    order_id: str
    status: OrderStatus
    timestamp: datetime

    # Optional payload
    venue: Optional[str] = None
    output_amount: Optional[Decimal] = None
    execution_ref: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_order(cls, order: Order) -> "StatusEvent":
        """Snapshot event reflecting the order's current persisted state."""
        return cls(
            order_id=order.order_id,
            status=order.status,
            timestamp=order.updated_at,
            venue=order.selected_venue,
            output_amount=order.output_amount,
            execution_ref=order.execution_ref,
            error=order.error,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def has_payload(self) -> bool:
        return any(
            v is not None
            for v in (self.venue, self.output_amount, self.execution_ref, self.error)
        )

    def to_message(self) -> Dict[str, Any]:
        """Wire form sent to live subscribers."""
        message: Dict[str, Any] = {
            "type": "status",
            "orderId": self.order_id,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.has_payload():
            message["data"] = {
                "venue": self.venue,
                "outputAmount": str(self.output_amount) if self.output_amount is not None else None,
                "executionRef": self.execution_ref,
                "error": self.error,
            }
        return message
