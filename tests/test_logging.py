"""
Structured logging.

INVARIANT:
    Every record emitted inside a LogContext carries that correlation id,
    so one order can be traced across tasks. File records are single JSON
    lines with caller-supplied extra fields kept under "extra".
"""

import asyncio
import json
import logging

import pytest

from swapdesk.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LogContext,
    LogStream,
    get_correlation_id,
    get_logger,
    log_performance,
)


def _record(logger, msg, level=logging.INFO, **extra):
    return logger.makeRecord(logger.name, level, __file__, 1, msg, (), None, extra=extra)


class TestCorrelation:

    def test_context_sets_and_restores(self):
        assert get_correlation_id() is None
        with LogContext("order-1") as cid:
            assert cid == "order-1"
            assert get_correlation_id() == "order-1"
        assert get_correlation_id() is None

    def test_context_generates_id(self):
        with LogContext() as cid:
            assert cid

    def test_record_carries_correlation_id(self):
        logger = get_logger(LogStream.ORDERS)
        with LogContext("order-7"):
            record = _record(logger, "Transition")
        assert record.correlation_id == "order-7"

    def test_tasks_keep_their_own_id(self):
        async def worker(order_id):
            with LogContext(order_id):
                await asyncio.sleep(0)
                return get_correlation_id()

        async def run():
            return await asyncio.gather(worker("a"), worker("b"))

        assert asyncio.run(run()) == ["a", "b"]


class TestFormatters:

    def test_json_line(self):
        logger = get_logger(LogStream.ROUTING)
        with LogContext("order-9"):
            record = _record(logger, "Selected Raydium", venue="Raydium")

        data = json.loads(JSONFormatter().format(record))
        assert data["logger"] == "swapdesk.routing"
        assert data["correlation_id"] == "order-9"
        assert data["message"] == "Selected Raydium"
        assert data["extra"] == {"venue": "Raydium"}
        assert "source" not in data

    def test_warning_includes_source(self):
        record = _record(get_logger(LogStream.QUEUE), "Job failed", level=logging.WARNING)
        assert "source" in json.loads(JSONFormatter().format(record))

    def test_console_line(self):
        with LogContext("abcdef123456"):
            record = _record(get_logger(LogStream.EVENTS), "Published")
        line = ConsoleFormatter(use_colors=False).format(record)
        assert "[EVENTS" in line
        assert "[corr:abcdef12]" in line
        assert line.endswith("Published")


class TestLogPerformance:

    def test_wraps_coroutines_only(self):
        with pytest.raises(TypeError):
            @log_performance()
            def not_async():
                pass

    def test_passes_result_and_errors_through(self):
        @log_performance(LogStream.ROUTING)
        async def ok():
            return 3

        @log_performance(LogStream.ROUTING)
        async def boom():
            raise RuntimeError("venue down")

        assert asyncio.run(ok()) == 3
        with pytest.raises(RuntimeError):
            asyncio.run(boom())
