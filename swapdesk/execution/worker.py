"""
Queue-backed execution worker.

ARCHITECTURE:
- N consumer tasks claim jobs from the SubmissionQueue
- Each claimed job is one attempt through the ExecutionPipeline
- Executions are rate limited by a shared Throttler
- Failed attempts are re-queued with backoff from the RetryPolicy; the
  last failed attempt marks the order FAILED
- Consumers sleep on a wakeup event and poll as a fallback, so jobs
  enqueued by another process or coming due after a delay are found

FAILURE CLASSES:
- OrderNotFoundError / InvalidStateError: permanent, nothing mutated
- UnknownVenueError: order FAILED at once, no retry
- everything else: retried until the policy says stop
"""

import asyncio
from typing import Dict, List, Optional

from swapdesk.errors import InvalidStateError, OrderNotFoundError, UnknownVenueError
from swapdesk.execution.pipeline import ExecutionPipeline
from swapdesk.execution.retry import RetryPolicy
from swapdesk.logging import get_logger, LogStream, LogContext
from swapdesk.net.throttler import EXECUTION_LIMIT_ID, Throttler
from swapdesk.queue.submission import Job, SubmissionQueue


class JobOutcome:
    """What happened to a processed job."""
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    REJECTED = "rejected"


class ExecutionWorker:
    """
    Pool of consumers executing queued orders.

    USAGE:
        worker = ExecutionWorker(queue, pipeline, RetryPolicy(), concurrency=10)
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        queue: SubmissionQueue,
        pipeline: ExecutionPipeline,
        retry_policy: Optional[RetryPolicy] = None,
        throttler: Optional[Throttler] = None,
        concurrency: int = 10,
        poll_interval: float = 0.5,
        shutdown_grace: float = 10.0,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1: {concurrency}")

        self.queue = queue
        self.pipeline = pipeline
        self.retry_policy = retry_policy or RetryPolicy()
        self.throttler = throttler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.shutdown_grace = shutdown_grace
        self.logger = get_logger(LogStream.QUEUE)

        self._tasks: List[asyncio.Task] = []
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._stopping = False

        # Statistics
        self._outcomes: Dict[str, int] = {
            JobOutcome.COMPLETED: 0,
            JobOutcome.RETRY: 0,
            JobOutcome.FAILED: 0,
            JobOutcome.REJECTED: 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """
        Recover interrupted jobs and start the consumers.

        Raises:
            RuntimeError: If already running
        """
        if self._running:
            raise RuntimeError("ExecutionWorker already running")

        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._stopping = False

        recovered = await asyncio.to_thread(self.queue.recover)
        self.queue.add_listener(self._on_enqueue)

        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"execution-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._running = True

        self.logger.info("ExecutionWorker started", extra={
            "concurrency": self.concurrency,
            "max_attempts": self.retry_policy.max_attempts,
            "recovered_jobs": recovered,
        })

    async def stop(self) -> None:
        """
        Stop claiming, give in-flight jobs the grace period, then cancel.

        Cancelled jobs stay active in the queue and are recovered on the
        next start().
        """
        if not self._running:
            return

        self._stopping = True
        self.queue.remove_listener(self._on_enqueue)
        self._wakeup.set()

        done, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self.logger.error(
                    f"Consumer {task.get_name()} crashed",
                    exc_info=task.exception(),
                )

        self._tasks = []
        self._running = False

        self.logger.info("ExecutionWorker stopped", extra={
            "cancelled_in_flight": len(pending),
            **self._outcomes,
        })

    def _on_enqueue(self, order_id: str) -> None:
        # Listener may fire from a worker thread (asyncio.to_thread)
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._wakeup.set)

    # ========================================================================
    # CONSUMER LOOP
    # ========================================================================

    async def _consume(self, index: int) -> None:
        while not self._stopping:
            try:
                job = await asyncio.to_thread(self.queue.claim)

                if job is None:
                    await self._idle()
                    continue

                if self.throttler is not None:
                    await self.throttler.acquire(EXECUTION_LIMIT_ID)

                await self.process(job)

            except Exception as e:
                self.logger.error(
                    "Unexpected error in consumer loop",
                    extra={"consumer": index, "error": str(e)},
                    exc_info=True,
                )
                await asyncio.sleep(self.poll_interval)

    async def _idle(self) -> None:
        timeout = self.poll_interval
        due_in = await asyncio.to_thread(self.queue.next_due_in)
        if due_in is not None:
            timeout = min(timeout, due_in)

        if timeout > 0:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        if not self._stopping:
            self._wakeup.clear()

    # ========================================================================
    # JOB PROCESSING
    # ========================================================================

    async def process(self, job: Job) -> str:
        """
        Run one attempt for a claimed job and settle it in the queue.

        Returns:
            A JobOutcome value
        """
        order_id = job.order_id
        attempt = job.attempt

        with LogContext(order_id):
            try:
                await self.pipeline.run_attempt(order_id, attempt)

            except (OrderNotFoundError, InvalidStateError) as e:
                self.logger.warning(f"Job rejected: {e}", extra={
                    "order_id": order_id,
                    "attempt": attempt,
                    "error_type": type(e).__name__,
                })
                await asyncio.to_thread(self.queue.fail, order_id, str(e))
                return self._record(JobOutcome.REJECTED)

            except UnknownVenueError as e:
                await self._fail_order(order_id, str(e))
                await asyncio.to_thread(self.queue.fail, order_id, str(e))
                return self._record(JobOutcome.FAILED)

            except Exception as e:
                delay: Optional[float] = None
                if self.retry_policy.should_retry(attempt, e):
                    delay = self.retry_policy.delay_for(attempt)

                self.pipeline.log_attempt_failure(order_id, attempt, e, delay)

                if delay is not None:
                    await asyncio.to_thread(self.queue.retry, order_id, delay, str(e))
                    return self._record(JobOutcome.RETRY)

                await self._fail_order(order_id, str(e))
                await asyncio.to_thread(self.queue.fail, order_id, str(e))
                return self._record(JobOutcome.FAILED)

            await asyncio.to_thread(self.queue.complete, order_id)
            return self._record(JobOutcome.COMPLETED)

    async def _fail_order(self, order_id: str, error: str) -> None:
        try:
            await self.pipeline.mark_failed(order_id, error)
        except Exception as e:
            # Caller still settles the queue entry as failed
            self.logger.error(
                "Could not mark order failed",
                extra={"order_id": order_id, "error": str(e)},
                exc_info=True,
            )

    def _record(self, outcome: str) -> str:
        self._outcomes[outcome] += 1
        return outcome

    def get_stats(self) -> Dict:
        stats = {
            "running": self._running,
            "concurrency": self.concurrency,
            **self._outcomes,
        }
        if self.throttler is not None:
            stats["throttle"] = self.throttler.get_stats(EXECUTION_LIMIT_ID)
        return stats
