"""
Dependency Injection Container.

Builds every component from one ConfigSchema in dependency order and
owns their lifecycle. Nothing in the package is a module-level
singleton; tests build their own Container (or wire components by hand).
"""

from pathlib import Path
from typing import Optional

from swapdesk.config.loader import ConfigLoader
from swapdesk.config.schema import ConfigSchema
from swapdesk.events.bus import OrderEventBus
from swapdesk.execution.pipeline import ExecutionPipeline
from swapdesk.execution.retry import RetryPolicy
from swapdesk.execution.worker import ExecutionWorker
from swapdesk.logging import get_logger, LogStream
from swapdesk.net.throttler import EXECUTION_LIMIT_ID, RateLimit, Throttler
from swapdesk.queue.submission import SubmissionQueue
from swapdesk.realtime.status_server import StatusServer
from swapdesk.routing.router import VenueRouter, create_router
from swapdesk.service import OrderService
from swapdesk.state.order_machine import OrderStateMachine
from swapdesk.state.order_store import OrderStore
from swapdesk.time import Clock, RealTimeClock

logger = get_logger(LogStream.SYSTEM)


class Container:
    """
    Owns the component graph.

    ORDER:
    1. Config
    2. Clock, Throttler
    3. OrderStore, SubmissionQueue, OrderEventBus
    4. Router, OrderStateMachine, ExecutionPipeline
    5. RetryPolicy, ExecutionWorker
    6. OrderService, StatusServer

    USAGE:
        container = Container()
        container.initialize(config_dir=Path("config"))
        await container.start()
        ...
        await container.shutdown()
    """

    def __init__(self, clock: Optional[Clock] = None, router: Optional[VenueRouter] = None):
        """
        Args:
            clock: Override the wall clock (tests)
            router: Override the configured simulated venues (tests)
        """
        self._config: Optional[ConfigSchema] = None
        self._clock = clock
        self._router = router

        self._throttler: Optional[Throttler] = None
        self._store: Optional[OrderStore] = None
        self._queue: Optional[SubmissionQueue] = None
        self._event_bus: Optional[OrderEventBus] = None
        self._machine: Optional[OrderStateMachine] = None
        self._pipeline: Optional[ExecutionPipeline] = None
        self._retry_policy: Optional[RetryPolicy] = None
        self._worker: Optional[ExecutionWorker] = None
        self._service: Optional[OrderService] = None
        self._status_server: Optional[StatusServer] = None

        self._started = False

    def initialize(self, config: Optional[ConfigSchema] = None, config_dir: Path = Path("config")) -> None:
        """
        Build all components. Loads config from config_dir when none is given.
        """
        if self._config is not None:
            raise RuntimeError("Container already initialized")

        # 1. Config
        if config is None:
            config = ConfigLoader(config_dir).load_and_validate()
        self._config = config
        logger.info("Config loaded")

        # 2. Clock and throttler
        if self._clock is None:
            self._clock = RealTimeClock()
        self._throttler = Throttler({
            EXECUTION_LIMIT_ID: RateLimit(
                config.worker.rate_limit_max,
                config.worker.rate_limit_window_seconds,
            ),
        })

        # 3. Storage and events
        self._store = OrderStore(config.store.db_path, clock=self._clock)
        self._queue = SubmissionQueue(config.queue.db_path)
        self._event_bus = OrderEventBus(max_queue_size=config.stream.subscriber_queue_size)

        # 4. Routing and pipeline
        if self._router is None:
            self._router = create_router(config)
        self._machine = OrderStateMachine(self._store, self._event_bus)
        self._pipeline = ExecutionPipeline(self._store, self._machine, self._router)

        # 5. Worker (owns the retry policy)
        self._retry_policy = RetryPolicy.from_config(config.worker)
        self._worker = ExecutionWorker(
            self._queue,
            self._pipeline,
            retry_policy=self._retry_policy,
            throttler=self._throttler,
            concurrency=config.worker.concurrency,
            poll_interval=config.worker.poll_interval_seconds,
            shutdown_grace=config.worker.shutdown_grace_seconds,
        )

        # 6. Service surface
        self._service = OrderService(
            self._store,
            self._queue,
            self._event_bus,
            self._pipeline,
            self._retry_policy,
            max_list_limit=config.store.max_list_limit,
        )
        self._status_server = StatusServer(
            self._service,
            host=config.stream.host,
            port=config.stream.port,
        )

        logger.info("Container initialized", extra={
            "venues": self._router.venue_names,
            "concurrency": config.worker.concurrency,
            "max_attempts": self._retry_policy.max_attempts,
        })

    # ========================================================================
    # ACCESSORS
    # ========================================================================

    def _require(self, component):
        if component is None:
            raise RuntimeError("Container not initialized")
        return component

    def get_config(self) -> ConfigSchema:
        return self._require(self._config)

    def get_clock(self) -> Clock:
        return self._require(self._clock)

    def get_throttler(self) -> Throttler:
        return self._require(self._throttler)

    def get_order_store(self) -> OrderStore:
        return self._require(self._store)

    def get_submission_queue(self) -> SubmissionQueue:
        return self._require(self._queue)

    def get_event_bus(self) -> OrderEventBus:
        return self._require(self._event_bus)

    def get_router(self) -> VenueRouter:
        return self._require(self._router)

    def get_order_machine(self) -> OrderStateMachine:
        return self._require(self._machine)

    def get_pipeline(self) -> ExecutionPipeline:
        return self._require(self._pipeline)

    def get_retry_policy(self) -> RetryPolicy:
        return self._require(self._retry_policy)

    def get_worker(self) -> ExecutionWorker:
        return self._require(self._worker)

    def get_service(self) -> OrderService:
        return self._require(self._service)

    def get_status_server(self) -> StatusServer:
        return self._require(self._status_server)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self, run_worker: bool = True, serve_stream: Optional[bool] = None) -> None:
        """
        Start the worker and (if enabled) the status endpoint.

        Args:
            run_worker: Start consuming the submission queue
            serve_stream: Serve WebSocket status; defaults to config.stream.enabled
        """
        config = self.get_config()
        if self._started:
            raise RuntimeError("Container already started")

        if serve_stream is None:
            serve_stream = config.stream.enabled

        if run_worker:
            await self._worker.start()
        if serve_stream:
            await self._status_server.start()

        self._started = True
        logger.info("Container started", extra={
            "worker": run_worker,
            "status_server": serve_stream,
        })

    async def shutdown(self) -> None:
        """
        Stop in dependency order.

        1. Worker stops claiming; in-flight jobs get the grace period
        2. Event bus subscriptions closed (streams end)
        3. Status server closed
        4. Order store and submission queue closed
        """
        if self._config is None:
            return

        try:
            await self._worker.stop()
        except Exception as e:
            logger.error(f"Error stopping worker: {e}", exc_info=True)

        self._event_bus.close_all()

        try:
            await self._status_server.stop()
        except Exception as e:
            logger.error(f"Error stopping status server: {e}", exc_info=True)

        self._store.close()
        self._queue.close()

        self._started = False
        logger.info("Container stopped")
