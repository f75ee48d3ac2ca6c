"""Per-destination proxy scheduling with cool-down and degraded reuse.

Each destination owns two FIFO structures:

- ``available``: proxies that were never handed out for this destination or
  whose cool-down has elapsed,
- ``recommended``: a log of recent recommendations ordered by time.

``recommend()`` hands out the head of ``available``. When it runs dry, cooled
down log entries are moved back; if none have cooled down, the oldest logged
proxy is reused (degraded reuse) so callers always get the least recently
recommended identity. Inactive proxies are dropped whenever they are
encountered and never swept eagerly.

``recommend()`` never waits: pacing a request until the proxy may legally hit
the destination again is the caller's job (see ``tradegate.proxy.http``).
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass

from tradegate.clock import Clock, now_micros
from tradegate.exchanges.base import Destination
from tradegate.middleware.error_handler import NoProxyAvailableError
from tradegate.proxy.pool import ProxyPool
from tradegate.proxy.types import ProxyEndpoint

logger = logging.getLogger(__name__)


@dataclass
class Recommendation:
    """A proxy handed out for a destination at ``timestamp`` (µs)."""

    proxy: ProxyEndpoint
    destination: str
    timestamp: int

    def cooled_down(self, now: int, minimum_interval: int) -> bool:
        return now - self.timestamp >= minimum_interval


class DestinationQueue:
    """Available queue and recommendation log for one destination.

    All methods expect the caller to hold ``lock``.
    """

    def __init__(self, destination: Destination) -> None:
        self.destination = destination
        self.available: deque[ProxyEndpoint] = deque()
        self.recommended: deque[Recommendation] = deque()
        self.lock = threading.Lock()

    def holds(self, proxy: ProxyEndpoint) -> bool:
        return proxy in self.available or any(r.proxy == proxy for r in self.recommended)

    def enqueue(self, proxy: ProxyEndpoint) -> bool:
        if self.holds(proxy):
            return False
        self.available.append(proxy)
        return True

    def discard(self, proxy: ProxyEndpoint) -> None:
        self.available = deque(p for p in self.available if p != proxy)
        self.recommended = deque(r for r in self.recommended if r.proxy != proxy)

    def pop_active(self) -> ProxyEndpoint | None:
        while self.available:
            proxy = self.available.popleft()
            if proxy.active:
                return proxy
        return None

    def record(self, proxy: ProxyEndpoint, now: int) -> ProxyEndpoint:
        self.recommended.append(Recommendation(proxy, self.destination.name, now))
        return proxy

    def release_cooled_down(self, now: int) -> int:
        """Move every cooled-down, active log entry back to ``available``."""
        interval = self.destination.minimum_request_interval
        still_cooling: deque[Recommendation] = deque()
        moved = 0
        for entry in self.recommended:
            if not entry.cooled_down(now, interval):
                still_cooling.append(entry)
            elif entry.proxy.active and entry.proxy not in self.available:
                self.available.append(entry.proxy)
                moved += 1
        self.recommended = still_cooling
        return moved

    def reuse_oldest(self, now: int) -> ProxyEndpoint | None:
        while self.recommended:
            entry = self.recommended.popleft()
            if entry.proxy.active:
                return self.record(entry.proxy, now)
        return None


class ProxyScheduler:
    """Hands out a rate-compliant proxy per destination.

    Parameters
    ----------
    pool:
        Registry of known proxies. New destinations are seeded from its active
        members.
    clock:
        Microsecond clock; injectable for deterministic tests.
    """

    def __init__(self, pool: ProxyPool | None = None, *, clock: Clock = now_micros) -> None:
        self._pool = pool if pool is not None else ProxyPool()
        self._clock = clock
        self._queues: dict[str, DestinationQueue] = {}
        self._lock = threading.Lock()

    @property
    def pool(self) -> ProxyPool:
        return self._pool

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_destination(self, destination: Destination) -> DestinationQueue:
        """Create the queues for *destination*, seeded with every active proxy."""
        with self._lock:
            queue = self._queues.get(destination.name)
            if queue is not None:
                queue.destination = destination
                return queue
            queue = DestinationQueue(destination)
            queue.available.extend(self._pool.active())
            self._queues[destination.name] = queue

        logger.info(
            "Registered destination %s with %d proxies",
            destination.name,
            len(queue.available),
            extra={"destination": destination.name},
        )
        return queue

    def is_supported_destination(self, destination: Destination) -> bool:
        return destination.name in self._queues

    def register_proxy(self, proxy: ProxyEndpoint) -> ProxyEndpoint:
        """Add *proxy* to the pool and to every destination that does not hold it yet."""
        proxy = self._pool.add(proxy)
        for queue in self._snapshot_queues():
            with queue.lock:
                queue.enqueue(proxy)
        return proxy

    def deregister_proxy(self, proxy: ProxyEndpoint) -> None:
        self._pool.remove(proxy)
        for queue in self._snapshot_queues():
            with queue.lock:
                queue.discard(proxy)

    def reactivate(self, proxy: ProxyEndpoint) -> None:
        """Activate *proxy* again and re-queue it wherever it was dropped."""
        proxy.activate()
        for queue in self._snapshot_queues():
            with queue.lock:
                queue.enqueue(proxy)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def recommend(self, destination: Destination) -> ProxyEndpoint:
        """Return the next proxy to use for *destination*.

        Raises ``NoProxyAvailableError`` when no active proxy is known for it.
        """
        queue = self._queues.get(destination.name) or self.register_destination(destination)

        with queue.lock:
            now = self._clock()
            while True:
                proxy = queue.pop_active()
                if proxy is not None:
                    return queue.record(proxy, now)
                if queue.release_cooled_down(now) == 0:
                    break

            proxy = queue.reuse_oldest(now)

        if proxy is None:
            raise NoProxyAvailableError(
                f"No proxy available for destination '{destination.name}'",
                destination=destination.name,
            )

        logger.debug(
            "Degraded reuse of proxy %s for %s",
            proxy.url,
            destination.name,
            extra={"destination": destination.name, "proxy_used": proxy.url},
        )
        return proxy

    # ------------------------------------------------------------------
    # Rating feedback
    # ------------------------------------------------------------------

    def report_failure(self, proxy: ProxyEndpoint) -> None:
        """Lower the proxy's rating; at the floor it is deactivated everywhere."""
        proxy.rate_down()
        logger.info(
            "Proxy %s failed, rating now %d",
            proxy.url,
            proxy.rating,
            extra={"proxy_used": proxy.url},
        )

    def report_success(self, proxy: ProxyEndpoint) -> None:
        proxy.rate_up()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        stats: dict[str, dict[str, int]] = {}
        for queue in self._snapshot_queues():
            with queue.lock:
                stats[queue.destination.name] = {
                    "available": len(queue.available),
                    "recommended": len(queue.recommended),
                }
        return stats

    def _snapshot_queues(self) -> list[DestinationQueue]:
        with self._lock:
            return list(self._queues.values())
