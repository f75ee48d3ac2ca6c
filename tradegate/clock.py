"""Wall-clock helpers. All core timestamps are integer microseconds since the epoch (UTC)."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

MICROS_PER_MILLI = 1_000
MICROS_PER_SECOND = 1_000_000
MICROS_PER_HOUR = 3_600 * MICROS_PER_SECOND
MICROS_PER_DAY = 24 * MICROS_PER_HOUR

Clock = Callable[[], int]


def now_micros() -> int:
    """Current UTC time in microseconds."""
    return time.time_ns() // 1_000


def micros_to_iso(micros: int) -> str:
    return datetime.fromtimestamp(micros / MICROS_PER_SECOND, tz=timezone.utc).isoformat()
