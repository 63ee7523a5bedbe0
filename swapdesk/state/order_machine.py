"""
Order state machine: validated transitions, persisted then published.

CRITICAL RULES:
1. All transitions must be pre-defined in VALID_TRANSITIONS
2. Invalid transitions raise InvalidTransitionError
3. Terminal states (CONFIRMED, FAILED) cannot transition further
4. Every transition is persisted BEFORE its event is published
5. Persistence is a compare-and-set on the expected from-status, so two
   concurrent drivers of the same order cannot both advance it
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Set, Tuple

from swapdesk.errors import InvalidTransitionError, TerminalStateError
from swapdesk.events.bus import OrderEventBus
from swapdesk.events.types import StatusEvent
from swapdesk.logging import get_logger, LogStream, LogContext
from swapdesk.state.order import Order, OrderStatus, TERMINAL_STATUSES
from swapdesk.state.order_store import OrderStore


# ============================================================================
# TRANSITION DEFINITION
# ============================================================================

@dataclass(frozen=True)
class OrderTransition:
    """Immutable definition of a valid state transition."""
    from_state: OrderStatus
    to_state: OrderStatus
    description: str = ""


# ============================================================================
# VALID TRANSITIONS REGISTRY
# ============================================================================

VALID_TRANSITIONS: Set[OrderTransition] = {
    OrderTransition(OrderStatus.PENDING, OrderStatus.ROUTING, "Worker picked up order"),
    OrderTransition(OrderStatus.ROUTING, OrderStatus.BUILDING, "Best quote selected"),
    OrderTransition(OrderStatus.BUILDING, OrderStatus.SUBMITTED, "Execution sent to venue"),
    OrderTransition(OrderStatus.SUBMITTED, OrderStatus.CONFIRMED, "Venue confirmed execution"),
    OrderTransition(OrderStatus.ROUTING, OrderStatus.FAILED, "Routing failed"),
    OrderTransition(OrderStatus.BUILDING, OrderStatus.FAILED, "Build failed"),
    OrderTransition(OrderStatus.SUBMITTED, OrderStatus.FAILED, "Execution failed"),
}

# Forward path a successful order walks
HAPPY_PATH = (
    OrderStatus.PENDING,
    OrderStatus.ROUTING,
    OrderStatus.BUILDING,
    OrderStatus.SUBMITTED,
    OrderStatus.CONFIRMED,
)


# ============================================================================
# ORDER STATE MACHINE
# ============================================================================

class OrderStateMachine:
    """
    Drives persisted orders through their lifecycle.

    USAGE:
        machine = OrderStateMachine(store, event_bus)

        order = await machine.transition(
            order_id, OrderStatus.PENDING, OrderStatus.ROUTING
        )
        order = await machine.confirm(
            order_id, OrderStatus.SUBMITTED,
            venue="Raydium", output_amount=Decimal("99.7"), execution_ref="ab12..."
        )
    """

    def __init__(self, store: OrderStore, event_bus: OrderEventBus):
        self.store = store
        self.event_bus = event_bus
        self.logger = get_logger(LogStream.ORDERS)

        # Build transition lookup map
        self._transition_map: Dict[Tuple[OrderStatus, OrderStatus], OrderTransition] = {
            (t.from_state, t.to_state): t for t in VALID_TRANSITIONS
        }

    # ========================================================================
    # STATE TRANSITIONS
    # ========================================================================

    async def transition(
        self,
        order_id: str,
        from_state: OrderStatus,
        to_state: OrderStatus,
        error: Optional[str] = None,
    ) -> Order:
        """
        Persist to_state (guarded by from_state), then publish it.

        Raises:
            TerminalStateError: from_state is terminal
            InvalidTransitionError: Transition not in the registry
            OrderNotFoundError: No such order
            InvalidStateError: Stored status is not from_state
        """
        with LogContext(order_id):
            self._check_transition(order_id, from_state, to_state)

            order = await asyncio.to_thread(
                self.store.update_status,
                order_id,
                to_state,
                error,
                from_state,
            )

            self.event_bus.publish(StatusEvent(
                order_id=order_id,
                status=order.status,
                timestamp=order.updated_at,
                error=order.error,
            ))

            self.logger.info(f"Transition: {from_state.value} -> {to_state.value}", extra={
                "order_id": order_id,
                "from_state": from_state.value,
                "to_state": to_state.value,
                "error": error,
            })
            return order

    async def confirm(
        self,
        order_id: str,
        from_state: OrderStatus,
        venue: str,
        output_amount: Decimal,
        execution_ref: str,
    ) -> Order:
        """
        Record execution details and CONFIRMED in one write, then publish.

        Raises:
            Same as transition()
        """
        with LogContext(order_id):
            self._check_transition(order_id, from_state, OrderStatus.CONFIRMED)

            order = await asyncio.to_thread(
                self.store.update_execution,
                order_id,
                venue,
                output_amount,
                execution_ref,
                OrderStatus.CONFIRMED,
                from_state,
            )

            self.event_bus.publish(StatusEvent.from_order(order))

            self.logger.info(f"Transition: {from_state.value} -> confirmed", extra={
                "order_id": order_id,
                "venue": venue,
                "output_amount": str(output_amount),
                "execution_ref": execution_ref,
            })
            return order

    def _check_transition(self, order_id: str, from_state: OrderStatus, to_state: OrderStatus) -> None:
        if from_state in TERMINAL_STATUSES:
            raise TerminalStateError(
                f"Cannot transition from {from_state.value}",
                order_id=order_id,
                status=from_state,
            )

        if (from_state, to_state) not in self._transition_map:
            raise InvalidTransitionError(
                f"Invalid: {from_state.value} -> {to_state.value}",
                order_id=order_id,
                status=from_state,
            )
