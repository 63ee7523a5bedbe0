from __future__ import annotations

import os
import threading
import time
import uuid

_lock = threading.Lock()
_last_ms = 0
_seq = 0


def new_order_id() -> str:
    """
    Time-ordered order ID (UUIDv7 layout, RFC 9562).

    48-bit unix milliseconds, then a 12-bit counter that increments for
    IDs minted in the same millisecond, then 62 random bits. Lexical order
    of the string form equals creation order within one process.

    Example:
      0190f1c2-7a3b-7000-9c1e-5b2d8f0a41e7
    """
    global _last_ms, _seq

    with _lock:
        ms = time.time_ns() // 1_000_000
        if ms > _last_ms:
            _last_ms = ms
            _seq = 0
        else:
            _seq += 1
            if _seq > 0xFFF:
                # Counter exhausted: borrow the next millisecond
                _last_ms += 1
                _seq = 0
        ms, seq = _last_ms, _seq

    rand = int.from_bytes(os.urandom(8), "big") & ((1 << 62) - 1)
    value = (ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= seq << 64
    value |= 0b10 << 62
    value |= rand
    return str(uuid.UUID(int=value))


def new_execution_ref(rng=None) -> str:
    """64 hex chars, shaped like an on-chain transaction hash."""
    if rng is None:
        return os.urandom(32).hex()
    return "".join(rng.choice("0123456789abcdef") for _ in range(64))
