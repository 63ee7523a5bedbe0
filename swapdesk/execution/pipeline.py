"""
One execution attempt of one order: route, build, submit, confirm.

ATTEMPT RULES:
- Attempt 1 requires PENDING; the PENDING -> ROUTING step is a
  compare-and-set, so only one trigger per order ever proceeds
- Later attempts resume from the stored non-terminal status and never
  re-publish a status the order already reached
- A fresh quote is taken on every attempt
- Execution details and CONFIRMED are written together
"""

import asyncio
from typing import Awaitable, Callable, Optional

from swapdesk.errors import (
    InvalidStateError,
    OrderNotFoundError,
    SwapDeskError,
    UnknownVenueError,
)
from swapdesk.execution.retry import RetryPolicy
from swapdesk.logging import get_logger, LogStream, LogContext
from swapdesk.routing.router import VenueRouter
from swapdesk.state.order import Order, OrderStatus
from swapdesk.state.order_machine import OrderStateMachine
from swapdesk.state.order_store import OrderStore


class ExecutionPipeline:
    """
    Drives one order through the lifecycle.

    USAGE:
        pipeline = ExecutionPipeline(store, machine, router)

        order = await pipeline.run_attempt(order_id, attempt=1)
        order = await pipeline.run_with_retries(order_id, RetryPolicy())
    """

    def __init__(self, store: OrderStore, machine: OrderStateMachine, router: VenueRouter):
        self.store = store
        self.machine = machine
        self.router = router
        self.logger = get_logger(LogStream.ORDERS)

    async def run_attempt(self, order_id: str, attempt: int = 1) -> Order:
        """
        Run one attempt to completion.

        Returns:
            The CONFIRMED order

        Raises:
            OrderNotFoundError: No such order (permanent)
            InvalidStateError: Attempt 1 on a non-PENDING order, or a later
                attempt on a terminal order (permanent)
            UnknownVenueError: Router picked an unconfigured venue (fatal)
            TransientError: Routing, execution or storage failed (retryable)
        """
        with LogContext(order_id):
            if attempt <= 1:
                order = await self.machine.transition(order_id, OrderStatus.PENDING, OrderStatus.ROUTING)
            else:
                order = await asyncio.to_thread(self.store.get, order_id)
                if order.is_terminal:
                    raise InvalidStateError(
                        f"Order {order_id} is already {order.status.value}",
                        order_id=order_id,
                        status=order.status,
                    )
                if order.status == OrderStatus.PENDING:
                    order = await self.machine.transition(order_id, OrderStatus.PENDING, OrderStatus.ROUTING)

            self.logger.info(f"Attempt {attempt} from {order.status.value}", extra={
                "order_id": order_id,
                "attempt": attempt,
                "status": order.status.value,
            })

            decision = await self.router.quote(order.input_token, order.output_token, order.input_amount)

            status = order.status
            if status == OrderStatus.ROUTING:
                await self.machine.transition(order_id, OrderStatus.ROUTING, OrderStatus.BUILDING)
                status = OrderStatus.BUILDING
            if status == OrderStatus.BUILDING:
                await self.machine.transition(order_id, OrderStatus.BUILDING, OrderStatus.SUBMITTED)

            result = await self.router.execute(decision.selected)

            return await self.machine.confirm(
                order_id,
                OrderStatus.SUBMITTED,
                venue=decision.selected.venue,
                output_amount=result.output_amount,
                execution_ref=result.execution_ref,
            )

    async def mark_failed(self, order_id: str, error: str) -> Order:
        """
        Move a non-terminal order to FAILED with error text.

        A PENDING order passes through ROUTING first. An order that is
        already terminal is returned unchanged.
        """
        with LogContext(order_id):
            order = await asyncio.to_thread(self.store.get, order_id)
            if order.is_terminal:
                return order

            if order.status == OrderStatus.PENDING:
                order = await self.machine.transition(order_id, OrderStatus.PENDING, OrderStatus.ROUTING)

            order = await self.machine.transition(order_id, order.status, OrderStatus.FAILED, error=error)

            self.logger.error(f"Order failed: {error}", extra={
                "order_id": order_id,
                "error": error,
            })
            return order

    async def run_with_retries(
        self,
        order_id: str,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> Order:
        """
        Drive an order to a terminal status in the caller's task.

        Returns:
            The final order (CONFIRMED or FAILED)

        Raises:
            OrderNotFoundError, InvalidStateError: Before anything was mutated
        """
        attempt = 1
        while True:
            try:
                return await self.run_attempt(order_id, attempt)
            except (OrderNotFoundError, InvalidStateError):
                raise
            except UnknownVenueError as e:
                return await self.mark_failed(order_id, str(e))
            except Exception as e:
                delay: Optional[float] = None
                if policy.should_retry(attempt, e):
                    delay = policy.delay_for(attempt)

                self.log_attempt_failure(order_id, attempt, e, delay)

                if delay is None:
                    return await self.mark_failed(order_id, str(e))

                await sleep(delay)
                attempt += 1

    def log_attempt_failure(self, order_id: str, attempt: int, error: Exception, delay: Optional[float]) -> None:
        extra = {
            "order_id": order_id,
            "attempt": attempt,
            "error": str(error),
            "error_type": type(error).__name__,
            "retry_in": delay,
        }
        if isinstance(error, SwapDeskError):
            self.logger.warning(f"Attempt {attempt} failed: {error}", extra=extra)
        else:
            self.logger.error(f"Attempt {attempt} failed unexpectedly: {error}", extra=extra, exc_info=True)
