"""
Runtime application: service process and one-shot commands.

serve   - worker + status endpoint until SIGINT/SIGTERM
submit  - create an order (queue it, or execute it in-process)
execute - drive a PENDING order to completion in-process
get     - print one order
list    - print a wallet's orders, newest first
watch   - follow an order's live status from a serving process
"""

from __future__ import annotations

import asyncio
import json
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from swapdesk.config.env import load_env
from swapdesk.config.loader import ConfigLoader
from swapdesk.config.schema import ConfigSchema
from swapdesk.di.container import Container
from swapdesk.errors import SwapDeskError, ValidationError
from swapdesk.logging import LogStream, get_logger, setup_logging
from swapdesk.realtime.status_client import watch_order
from swapdesk.state.order import OrderStatus

logger = get_logger(LogStream.SYSTEM)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


@dataclass
class RunOptions:
    command: str
    config_dir: Path = Path("config")
    args: Dict[str, Any] = field(default_factory=dict)
    log_level: Optional[str] = None


def _emit(payload: Any, out: Callable[[str], None]) -> None:
    out(json.dumps(payload, indent=2, default=str))


def _configure(opts: RunOptions) -> ConfigSchema:
    load_env(search_dirs=[Path.cwd(), opts.config_dir])
    config = ConfigLoader(opts.config_dir).load_and_validate()

    lc = config.logging
    console_level = opts.log_level or lc.console_level.value
    setup_logging(
        log_dir=lc.log_dir,
        log_level=lc.log_level.value,
        console_level=console_level,
        json_logs=lc.json_logs,
        max_bytes=lc.max_bytes,
        backup_count=lc.backup_count,
        file_logging=lc.file_logging,
    )
    config.ensure_directories()
    return config


# ============================================================================
# COMMANDS
# ============================================================================

async def serve(container: Container, stop_event: Optional[asyncio.Event] = None) -> int:
    """Run worker and status endpoint until stop_event is set or a signal arrives."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; Ctrl+C still raises KeyboardInterrupt
            pass

    try:
        await container.start()
        logger.info("Service running; press Ctrl+C to stop")
        await stop_event.wait()
    finally:
        logger.info("Shutdown requested")
        await container.shutdown()
    return EXIT_OK


async def submit(
    container: Container,
    wallet: str,
    input_token: str,
    output_token: str,
    amount: str,
    execute: bool = False,
    out: Callable[[str], None] = print,
) -> int:
    service = container.get_service()

    if execute:
        order = await service.submit(wallet, input_token, output_token, amount)
        order = await service.execute(order.order_id)
    else:
        order = await service.submit_and_enqueue(wallet, input_token, output_token, amount)

    _emit(order.to_dict(), out)
    return EXIT_OK


async def execute(container: Container, order_id: str, out: Callable[[str], None] = print) -> int:
    order = await container.get_service().execute(order_id)
    _emit(order.to_dict(), out)
    return EXIT_OK if order.status == OrderStatus.CONFIRMED else EXIT_FAILURE


async def get(container: Container, order_id: str, out: Callable[[str], None] = print) -> int:
    order = await container.get_service().get(order_id)
    _emit(order.to_dict(), out)
    return EXIT_OK


async def list_orders(container: Container, wallet: str, limit: int, out: Callable[[str], None] = print) -> int:
    orders = await container.get_service().list_by_wallet(wallet, limit)
    _emit([o.to_dict() for o in orders], out)
    return EXIT_OK


async def watch(url: str, order_id: str, out: Callable[[str], None] = print) -> int:
    async for message in watch_order(url, order_id):
        out(json.dumps(message))
        if message.get("type") == "error":
            return EXIT_FAILURE
    return EXIT_OK


# ============================================================================
# ENTRYPOINT
# ============================================================================

async def _run(opts: RunOptions, config: ConfigSchema) -> int:
    args = opts.args

    if opts.command == "watch":
        url = args.get("url") or f"ws://{config.stream.host}:{config.stream.port}"
        return await watch(url, args["order_id"])

    container = Container()
    container.initialize(config)

    if opts.command == "serve":
        return await serve(container)

    try:
        if opts.command == "submit":
            return await submit(
                container,
                args["wallet"],
                args["input_token"],
                args["output_token"],
                args["amount"],
                execute=args.get("execute", False),
            )
        if opts.command == "execute":
            return await execute(container, args["order_id"])
        if opts.command == "get":
            return await get(container, args["order_id"])
        if opts.command == "list":
            return await list_orders(container, args["wallet"], args.get("limit", 50))
        raise ValueError(f"Unknown command: {opts.command}")
    finally:
        await container.shutdown()


def run_app(opts: RunOptions) -> int:
    """
    Public entrypoint. MUST return an int exit code.
    0 = success
    1 = order failed or runtime failure
    2 = invalid input
    """
    try:
        config = _configure(opts)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return EXIT_USAGE

    try:
        return asyncio.run(_run(opts, config))
    except KeyboardInterrupt:
        return EXIT_OK
    except ValidationError as e:
        print(json.dumps({"type": "error", "field": e.field, "message": e.message}))
        return EXIT_USAGE
    except SwapDeskError as e:
        print(json.dumps({"type": "error", "message": str(e)}))
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("Fatal error in run_app: %s", e)
        return EXIT_FAILURE
