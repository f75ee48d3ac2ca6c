"""Call result cache bounded by each destination's update interval.

Stores the result of an exchange call keyed by (destination, operation,
arguments) so that identical calls issued before the destination's update
interval has elapsed are answered from memory. Lookup is two-phase: find the
entry by key, then check that it is still fresh. Stale entries are deleted on
sight and never returned.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Any

from tradegate.clock import Clock, now_micros
from tradegate.exchanges.base import Destination

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallKey:
    """Structural identity of an exchange call. Proxy identity is irrelevant."""

    destination: str
    operation: str
    arguments: tuple[Hashable, ...] = ()

    @classmethod
    def of(cls, destination: Destination, operation: str, *arguments: Hashable) -> CallKey:
        return cls(destination.name, operation, tuple(arguments))


@dataclass
class CachedCall:
    """A stored result and the time (µs) it was stored."""

    result: Any
    stored_at: int

    def is_fresh(self, now: int, update_interval: int) -> bool:
        return now - self.stored_at < update_interval


class CallResultCache:
    """Thread-safe map of call keys to their latest result.

    Results must not be None; None from ``lookup`` means "absent".
    """

    def __init__(self, *, clock: Clock = now_micros) -> None:
        self._clock = clock
        self._entries: dict[CallKey, CachedCall] = {}
        self._intervals: dict[str, int] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expirations = 0

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, destination: Destination, operation: str, *arguments: Hashable) -> Any | None:
        """Return the stored result if it is younger than the destination's update interval."""
        key = CallKey.of(destination, operation, *arguments)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_fresh(self._clock(), destination.update_interval):
                self._hits += 1
                return entry.result

            del self._entries[key]
            self._expirations += 1
            self._misses += 1

        logger.debug(
            "Cached %s result for %s expired",
            operation,
            destination.name,
            extra={"destination": destination.name},
        )
        return None

    def store(self, destination: Destination, operation: str, *arguments: Hashable, result: Any) -> None:
        """Insert or overwrite the result of a call, stamped with the current time."""
        if result is None:
            raise ValueError("Cannot cache a None result")
        key = CallKey.of(destination, operation, *arguments)
        with self._lock:
            self._entries[key] = CachedCall(result=result, stored_at=self._clock())
            self._intervals[destination.name] = destination.update_interval

    def invalidate(self, destination: Destination, operation: str | None = None) -> int:
        """Drop every entry of *destination* (optionally only one operation)."""
        with self._lock:
            doomed = [
                key
                for key in self._entries
                if key.destination == destination.name
                and (operation is None or key.operation == operation)
            ]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        """Delete all stale entries and return how many were removed."""
        with self._lock:
            now = self._clock()
            doomed = [
                key
                for key, entry in self._entries.items()
                if not entry.is_fresh(now, self._intervals.get(key.destination, 0))
            ]
            for key in doomed:
                del self._entries[key]
            self._expirations += len(doomed)
        return len(doomed)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
            }
