"""Identifier and timestamp helpers."""

from __future__ import annotations

import time
import uuid

_last_sequence = 0


def generate_unique_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_sequence() -> int:
    """Strictly increasing ordering key, based on the wall clock in nanoseconds."""
    global _last_sequence
    _last_sequence = max(time.time_ns(), _last_sequence + 1)
    return _last_sequence
