"""
Logging infrastructure for SwapDesk.

Features:
- JSON structured logging for files
- Correlation ID tracking (trace one order across async tasks)
- Multiple log streams (system, orders, routing, queue, events)
- Log rotation
"""

from .logger import (
    get_logger,
    setup_logging,
    LogContext,
    log_performance,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "log_performance",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
]
