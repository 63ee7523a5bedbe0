"""
Client for the live status endpoint.

Used by the CLI to watch an order executing in a service process.
"""

import json
from typing import AsyncIterator, Dict

import websockets
from websockets.exceptions import ConnectionClosed

from swapdesk.logging import get_logger, LogStream

logger = get_logger(LogStream.EVENTS)


async def watch_order(url: str, order_id: str) -> AsyncIterator[Dict]:
    """
    Yield status messages for order_id until the server closes the stream.

    Args:
        url: Base endpoint, e.g. ws://127.0.0.1:8765
    """
    uri = f"{url.rstrip('/')}/orders/{order_id}"
    logger.info(f"Connecting to {uri}...")

    async with websockets.connect(uri, ping_interval=20, ping_timeout=10) as ws:
        while True:
            try:
                raw = await ws.recv()
            except ConnectionClosed:
                break
            yield json.loads(raw)
