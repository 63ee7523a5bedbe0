"""
Order model and persistence.

The state machine lives in swapdesk.state.order_machine and is imported
from there directly.
"""

from .order import (
    Order,
    OrderStatus,
    TERMINAL_STATUSES,
    validate_order_input,
    parse_amount,
)
from .order_store import OrderStore

__all__ = [
    "Order",
    "OrderStatus",
    "TERMINAL_STATUSES",
    "validate_order_input",
    "parse_amount",
    "OrderStore",
]
