"""
WebSocket endpoint for live order status.

    ws://host:port/orders/{order_id}

Per connection:
- first message is a snapshot of the stored order
- then every later status of that order, in order
- the server closes the connection after a terminal status
- unknown order: one {"type": "error", "message": ...} then close
"""

import asyncio
import json
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed

from swapdesk.errors import OrderNotFoundError
from swapdesk.logging import get_logger, LogStream, LogContext
from swapdesk.service import OrderService

logger = get_logger(LogStream.EVENTS)

ORDERS_PATH_PREFIX = "/orders/"


def parse_order_path(path: str) -> Optional[str]:
    """Order id from /orders/{order_id}, or None."""
    path = path.split("?", 1)[0].rstrip("/")
    if not path.startswith(ORDERS_PATH_PREFIX):
        return None
    order_id = path[len(ORDERS_PATH_PREFIX):]
    if not order_id or "/" in order_id:
        return None
    return order_id


def error_message(message: str) -> str:
    return json.dumps({"type": "error", "message": message})


class StatusServer:
    """
    Serves StatusStreams over WebSocket.

    Usage:
        server = StatusServer(service, host="127.0.0.1", port=8765)
        await server.start()
        ...
        await server.stop()
    """

    def __init__(self, service: OrderService, host: str = "127.0.0.1", port: int = 8765):
        self.service = service
        self.host = host
        self.port = port
        self._server = None

        # Statistics
        self._connections_total = 0
        self._connections_open = 0
        self._messages_sent = 0

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful with port=0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self) -> None:
        if self._server is not None:
            raise RuntimeError("StatusServer already running")

        self._server = await websockets.serve(self._handle, self.host, self.port)

        logger.info(
            f"StatusServer listening on ws://{self.host}:{self.bound_port}{ORDERS_PATH_PREFIX}{{order_id}}",
            extra={"host": self.host, "port": self.bound_port},
        )

    async def stop(self) -> None:
        if self._server is None:
            return

        self._server.close()
        await self._server.wait_closed()
        self._server = None

        logger.info("StatusServer stopped", extra=self.get_stats())

    async def _handle(self, websocket) -> None:
        path = getattr(getattr(websocket, "request", None), "path", None) or getattr(websocket, "path", "")
        order_id = parse_order_path(path)

        self._connections_total += 1
        self._connections_open += 1
        try:
            if order_id is None:
                await websocket.send(error_message(f"Unknown path: {path}"))
                return

            with LogContext(order_id):
                await self._stream_order(websocket, order_id)

        except ConnectionClosed as e:
            logger.debug("Client disconnected", extra={
                "order_id": order_id,
                "code": e.rcvd.code if e.rcvd else None,
            })
        finally:
            self._connections_open -= 1
            await websocket.close()

    async def _stream_order(self, websocket, order_id: str) -> None:
        stream = self.service.stream(order_id)

        # Client going away must end the wait for the next event
        watcher = asyncio.create_task(self._close_on_disconnect(websocket, stream))
        try:
            async for event in stream:
                await websocket.send(json.dumps(event.to_message()))
                self._messages_sent += 1

            if stream.dropped:
                logger.warning("Status stream dropped for slow client", extra={"order_id": order_id})

        except OrderNotFoundError:
            await websocket.send(error_message("Order not found"))
        finally:
            watcher.cancel()
            stream.close()

    @staticmethod
    async def _close_on_disconnect(websocket, stream) -> None:
        await websocket.wait_closed()
        stream.close()

    def get_stats(self) -> dict:
        return {
            "connections_total": self._connections_total,
            "connections_open": self._connections_open,
            "messages_sent": self._messages_sent,
        }
