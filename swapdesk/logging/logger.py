"""
Core logging module with structured logging and correlation ID tracking.

Architecture:
- Multiple log streams (system, orders, routing, queue, events)
- JSON formatting for file handlers
- Human-readable console formatting for development
- Correlation ID propagation (order_id) across async tasks via ContextVar
- Automatic rotation
"""

import asyncio
import functools
import logging
import logging.handlers
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

# Context variable for correlation ID (task-local under asyncio)
_correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

LOGGER_PREFIX = "swapdesk"


# ============================================================================
# LOG STREAM DEFINITIONS
# ============================================================================

class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"           # Startup, shutdown, configuration
    ORDERS = "orders"           # Order lifecycle and state transitions
    ROUTING = "routing"         # Venue quotes, selection, executions
    QUEUE = "queue"             # Submission queue and worker
    EVENTS = "events"           # Event bus and live status streams

    ALL = (SYSTEM, ORDERS, ROUTING, QUEUE, EVENTS)


# ============================================================================
# CORRELATION ID MANAGEMENT
# ============================================================================

def get_correlation_id() -> Optional[str]:
    """Get correlation ID for current context."""
    return _correlation_id.get()


class LogContext:
    """
    Context manager for scoped correlation ID.

    Usage:
        with LogContext(order_id):
            logger.info("Routing order")  # Includes correlation_id
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self):
        self._token = _correlation_id.set(self.correlation_id or str(uuid.uuid4()))
        return _correlation_id.get()

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)


# ============================================================================
# CUSTOM LOG RECORD FACTORY
# ============================================================================

_original_factory = logging.getLogRecordFactory()


def _correlation_id_factory(*args, **kwargs):
    """Custom log record factory that injects correlation ID."""
    record = _original_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


logging.setLogRecordFactory(_correlation_id_factory)


# ============================================================================
# LOGGER SETUP
# ============================================================================

_loggers_initialized = False


def setup_logging(
    log_dir: Path = Path("logs"),
    log_level: str = "INFO",
    console_level: str = "INFO",
    json_logs: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
    file_logging: bool = True,
) -> None:
    """
    Initialize logging infrastructure.

    Creates one rotating file per stream (logs/<stream>/<stream>.log) plus
    a console handler on the root logger.

    Args:
        log_dir: Base directory for logs
        log_level: File logging level
        console_level: Console logging level
        json_logs: If True, use JSON formatting for files
        max_bytes: Max bytes per log file before rotation
        backup_count: Number of backup files to keep
        file_logging: If False, only the console handler is installed
    """
    global _loggers_initialized

    if _loggers_initialized:
        return

    from .formatters import JSONFormatter, ConsoleFormatter

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    root.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, console_level.upper()))
    console_handler.setFormatter(ConsoleFormatter())
    root.addHandler(console_handler)

    file_level = getattr(logging, log_level.upper())

    if file_logging:
        for stream in LogStream.ALL:
            stream_dir = log_dir / stream
            stream_dir.mkdir(parents=True, exist_ok=True)

            handler = logging.handlers.RotatingFileHandler(
                stream_dir / f"{stream}.log",
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            handler.setLevel(file_level)

            if json_logs:
                handler.setFormatter(JSONFormatter())
            else:
                handler.setFormatter(logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(correlation_id)s - %(message)s'
                ))

            logger = logging.getLogger(f"{LOGGER_PREFIX}.{stream}")
            logger.addHandler(handler)
            logger.setLevel(file_level)
            logger.propagate = True  # Also reaches the console

    _loggers_initialized = True

    get_logger(LogStream.SYSTEM).info(
        "Logging system initialized",
        extra={
            "log_dir": str(log_dir),
            "log_level": log_level,
            "json_logs": json_logs,
            "file_logging": file_logging,
        }
    )


def get_logger(stream: str) -> logging.Logger:
    """
    Get logger for specific stream.

    Example:
        logger = get_logger(LogStream.ORDERS)
        logger.info("Order created", extra={"order_id": order_id})
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{stream}")


# ============================================================================
# PERFORMANCE LOGGING DECORATOR
# ============================================================================

def log_performance(stream: str = LogStream.SYSTEM):
    """
    Decorator to log execution time of a coroutine function.

    Usage:
        @log_performance(LogStream.ROUTING)
        async def quote(...):
            ...
    """
    def decorator(func):
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("log_performance expects a coroutine function")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(stream)
            start = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.debug(
                    f"{func.__name__} failed",
                    extra={
                        "function": func.__name__,
                        "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                        "success": False,
                        "error_type": type(e).__name__,
                    }
                )
                raise

            logger.debug(
                f"{func.__name__} completed",
                extra={
                    "function": func.__name__,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "success": True,
                }
            )
            return result

        return wrapper
    return decorator
