"""
Order service: the external surface of the execution pipeline.

Submission, execution triggers, queries and live status streams. Every
dependency is injected; nothing here is a module-level singleton.
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from swapdesk.errors import InvalidStateError
from swapdesk.events.bus import OrderEventBus, Subscription
from swapdesk.events.types import StatusEvent
from swapdesk.execution.pipeline import ExecutionPipeline
from swapdesk.execution.retry import RetryPolicy
from swapdesk.ids import new_order_id
from swapdesk.logging import get_logger, LogStream, LogContext
from swapdesk.queue.submission import SubmissionQueue
from swapdesk.state.order import Order, validate_order_input
from swapdesk.state.order_store import OrderStore


DEFAULT_LIST_LIMIT = 50


class StatusStream:
    """
    Live status of one order.

    The first event is a snapshot of the stored order. After that only
    events strictly ahead of the last emitted status are forwarded, and
    iteration ends once a terminal status has been emitted.

    Subscribing happens before the snapshot is read, so a transition
    racing with the snapshot is either in the snapshot or delivered
    afterwards, never lost.

    USAGE:
        async for event in service.stream(order_id):
            send(event.to_message())
    """

    def __init__(self, store: OrderStore, event_bus: OrderEventBus, order_id: str):
        self.order_id = order_id
        self._store = store
        self._bus = event_bus
        self._sub: Optional[Subscription] = None
        self._closed = False

    @property
    def dropped(self) -> bool:
        """True if the stream ended because the subscriber fell behind."""
        return self._sub is not None and self._sub.dropped

    def __aiter__(self) -> AsyncIterator[StatusEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[StatusEvent]:
        if self._closed:
            return

        self._sub = self._bus.subscribe(self.order_id)
        try:
            order = await asyncio.to_thread(self._store.get, self.order_id)

            yield StatusEvent.from_order(order)
            if order.is_terminal:
                return
            last_rank = order.status.rank

            async for event in self._sub:
                if event.status.rank <= last_rank:
                    continue
                yield event
                if event.is_terminal:
                    return
                last_rank = event.status.rank
        finally:
            self._sub.close()

    def close(self) -> None:
        """End the stream from any task or thread."""
        self._closed = True
        if self._sub is not None:
            self._sub.close()


class OrderService:
    """
    Facade over store, queue, bus and pipeline.

    USAGE:
        service = OrderService(store, queue, bus, pipeline, RetryPolicy())

        order = await service.submit("wallet1", "SOL", "USDC", "10")
        order = await service.execute(order.order_id)
    """

    def __init__(
        self,
        store: OrderStore,
        queue: SubmissionQueue,
        event_bus: OrderEventBus,
        pipeline: ExecutionPipeline,
        retry_policy: RetryPolicy,
        max_list_limit: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.queue = queue
        self.event_bus = event_bus
        self.pipeline = pipeline
        self.retry_policy = retry_policy
        self.max_list_limit = max_list_limit
        self._sleep = sleep
        self.logger = get_logger(LogStream.ORDERS)

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    async def submit(self, wallet: Any, input_token: Any, output_token: Any, input_amount: Any) -> Order:
        """
        Create a PENDING order.

        Raises:
            ValidationError: Naming the offending field; nothing is stored
        """
        wallet, input_token, output_token, amount = validate_order_input(
            wallet, input_token, output_token, input_amount
        )
        order_id = new_order_id()

        with LogContext(order_id):
            return await asyncio.to_thread(
                self.store.create,
                order_id,
                wallet,
                input_token,
                output_token,
                amount,
            )

    async def submit_and_enqueue(self, wallet: Any, input_token: Any, output_token: Any, input_amount: Any) -> Order:
        """Create a PENDING order, queue its execution and announce it."""
        order = await self.submit(wallet, input_token, output_token, input_amount)

        with LogContext(order.order_id):
            await asyncio.to_thread(self.queue.enqueue, order.order_id, self._job_payload(order))
            self.event_bus.publish(StatusEvent.from_order(order))
        return order

    # ========================================================================
    # EXECUTION TRIGGERS
    # ========================================================================

    async def execute(self, order_id: str) -> Order:
        """
        Drive a PENDING order to CONFIRMED or FAILED in the caller's task.

        Retries follow the retry policy with in-task backoff.

        Raises:
            OrderNotFoundError: No such order
            InvalidStateError: Order is not PENDING; nothing is mutated
        """
        return await self.pipeline.run_with_retries(order_id, self.retry_policy, sleep=self._sleep)

    async def enqueue_execute(self, order_id: str) -> bool:
        """
        Hand a PENDING order to the execution worker.

        Returns:
            True if queued, False if a job for the order already exists

        Raises:
            OrderNotFoundError: No such order
            InvalidStateError: Order is not PENDING
        """
        order = await self.get(order_id)
        if not order.is_pending:
            raise InvalidStateError(
                f"Order {order_id} is {order.status.value}, expected pending",
                order_id=order_id,
                status=order.status,
            )

        with LogContext(order_id):
            return await asyncio.to_thread(self.queue.enqueue, order_id, self._job_payload(order))

    @staticmethod
    def _job_payload(order: Order) -> dict:
        return {
            "orderId": order.order_id,
            "wallet": order.wallet,
            "inputToken": order.input_token,
            "outputToken": order.output_token,
            "inputAmount": str(order.input_amount),
        }

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: No such order
        """
        return await asyncio.to_thread(self.store.get, order_id)

    async def list_by_wallet(self, wallet: str, limit: int = DEFAULT_LIST_LIMIT) -> List[Order]:
        """Newest first; limit is clamped to 1..max_list_limit."""
        wallet = wallet.strip()
        limit = max(1, min(int(limit), self.max_list_limit))
        return await asyncio.to_thread(self.store.list_by_wallet, wallet, limit)

    def stream(self, order_id: str) -> StatusStream:
        """Live status stream; raises OrderNotFoundError on first iteration if unknown."""
        return StatusStream(self.store, self.event_bus, order_id)
