"""
Identifier and clock helpers.

INVARIANT:
    Order ids are unique and sort in creation order. Execution references
    are 64 lowercase hex characters. Clocks only hand out aware UTC times.
"""

import random
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from swapdesk.ids import new_execution_ref, new_order_id
from swapdesk.time import ManualClock, RealTimeClock, ensure_utc


class TestOrderIds:

    def test_unique_and_time_ordered(self):
        ids = [new_order_id() for _ in range(2000)]
        assert len(set(ids)) == len(ids)
        assert ids == sorted(ids)

    def test_uuid_v7_layout(self):
        parsed = uuid.UUID(new_order_id())
        assert parsed.version == 7
        assert parsed.variant == uuid.RFC_4122


class TestExecutionRef:

    def test_shape(self):
        ref = new_execution_ref()
        assert len(ref) == 64
        assert ref == ref.lower()
        int(ref, 16)

    def test_seeded_rng_repeatable(self):
        assert new_execution_ref(random.Random(9)) == new_execution_ref(random.Random(9))


class TestClocks:

    def test_real_clock_is_utc(self):
        assert RealTimeClock().now().tzinfo is not None

    def test_manual_clock_moves_only_when_told(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clock = ManualClock(start)
        assert clock.now() == start
        clock.advance(timedelta(seconds=3))
        assert clock.now() == start + timedelta(seconds=3)

    def test_naive_times_rejected(self):
        with pytest.raises(ValueError):
            ManualClock(datetime(2026, 1, 1))

    def test_ensure_utc(self):
        aware = ensure_utc(datetime(2026, 1, 1, 12, 0))
        assert aware.tzinfo == timezone.utc
