"""Live status over WebSocket."""

from .status_server import StatusServer, parse_order_path
from .status_client import watch_order

__all__ = [
    "StatusServer",
    "parse_order_path",
    "watch_order",
]
