"""Rolling trade history per (exchange, pair), fed by a background poller.

``TradeWindow`` is the data structure: strictly ascending by timestamp, no
duplicates, trimmed to a retention span. It is mutated only by its own
poller and read concurrently through copies taken under a lock.

``TradeHistoryCache`` owns one window and the asyncio task that refreshes it:

1. fetch trades newer than ``last_checked`` (initially one hour back),
2. advance ``last_checked`` to ``now - slack`` whether or not the fetch worked,
3. merge the batch, evict trades older than the retention span,
4. sleep for the exchange's update interval plus a small margin.

A failed fetch is logged and leaves the window untouched; the poller keeps
running. ``stop()`` sets the stop token, which also ends the sleep, and waits
for the in-flight iteration to finish.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable

from tradegate.clock import (
    MICROS_PER_DAY,
    MICROS_PER_HOUR,
    MICROS_PER_MILLI,
    MICROS_PER_SECOND,
    Clock,
    now_micros,
)
from tradegate.exchanges.base import ExchangeAdapter
from tradegate.models.market import CurrencyPair, Trade

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = MICROS_PER_DAY
DEFAULT_INITIAL_LOOKBACK = MICROS_PER_HOUR
DEFAULT_FETCH_SLACK = 3 * MICROS_PER_SECOND
DEFAULT_POLL_MARGIN = 100 * MICROS_PER_MILLI


class TradeWindow:
    """Ordered, duplicate-free trade sequence."""

    def __init__(self) -> None:
        self._trades: list[Trade] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._trades)

    @property
    def oldest_timestamp(self) -> int | None:
        with self._lock:
            return self._trades[0].timestamp if self._trades else None

    @property
    def newest_timestamp(self) -> int | None:
        with self._lock:
            return self._trades[-1].timestamp if self._trades else None

    def merge(self, batch: Iterable[Trade]) -> int:
        """Append the records of *batch* newer than the current newest trade.

        Returns the number of trades appended.
        """
        ordered = sorted(batch, key=lambda trade: trade.timestamp)
        with self._lock:
            newest = self._trades[-1].timestamp if self._trades else None
            appended = 0
            for trade in ordered:
                if newest is not None and trade.timestamp <= newest:
                    continue
                self._trades.append(trade)
                newest = trade.timestamp
                appended += 1
        return appended

    def evict_older_than(self, cutoff: int) -> int:
        """Drop trades with ``timestamp < cutoff``; returns the number removed."""
        with self._lock:
            keep_from = 0
            while keep_from < len(self._trades) and self._trades[keep_from].timestamp < cutoff:
                keep_from += 1
            if keep_from:
                del self._trades[:keep_from]
        return keep_from

    def contains(self, start: int, end: int) -> bool:
        """True only if the window fully covers ``[start, end]``."""
        with self._lock:
            if not self._trades:
                return False
            return self._trades[0].timestamp <= start and self._trades[-1].timestamp >= end

    def trades(self, start: int | None = None, end: int | None = None) -> list[Trade]:
        """Copy of the trades with ``start <= timestamp <= end`` (bounds optional)."""
        with self._lock:
            return [
                trade
                for trade in self._trades
                if (start is None or trade.timestamp >= start)
                and (end is None or trade.timestamp <= end)
            ]


class TradeHistoryCache:
    """Keeps a TradeWindow for one exchange pair up to date in the background.

    Parameters
    ----------
    exchange:
        Adapter queried for new trades.
    pair:
        Instrument whose trades are cached.
    retention:
        Maximum age (µs) of trades kept in the window.
    initial_lookback:
        How far back (µs) the first fetch reaches.
    fetch_slack:
        Subtracted (µs) from ``now`` when advancing ``last_checked`` to absorb
        connection latency at the boundary.
    poll_margin:
        Added (µs) to the exchange's update interval between polls.
    """

    def __init__(
        self,
        exchange: ExchangeAdapter,
        pair: CurrencyPair,
        *,
        retention: int = DEFAULT_RETENTION,
        initial_lookback: int = DEFAULT_INITIAL_LOOKBACK,
        fetch_slack: int = DEFAULT_FETCH_SLACK,
        poll_margin: int = DEFAULT_POLL_MARGIN,
        clock: Clock = now_micros,
    ) -> None:
        self.exchange = exchange
        self.pair = pair
        self.window = TradeWindow()
        self._retention = retention
        self._fetch_slack = fetch_slack
        self._poll_margin = poll_margin
        self._clock = clock
        self._last_checked = clock() - initial_lookback - fetch_slack
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def last_checked(self) -> int:
        return self._last_checked

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def poll_interval_seconds(self) -> float:
        return (self.exchange.update_interval + self._poll_margin) / MICROS_PER_SECOND

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the poller. Calling it while running is a no-op."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(self._stop_event),
            name=f"trade-history:{self.exchange.name}:{self.pair.name}",
        )
        logger.info(
            "Trade history polling started",
            extra={"destination": self.exchange.name, "pair": self.pair.name},
        )

    async def stop(self) -> None:
        """Signal the poller and wait for its current iteration. No-op when stopped."""
        task, stop_event = self._task, self._stop_event
        if task is None or stop_event is None:
            return
        self._task = None
        self._stop_event = None
        stop_event.set()
        # Shielded so cancelling stop() never cancels the poller mid-iteration
        results = await asyncio.gather(asyncio.shield(task), return_exceptions=True)
        if isinstance(results[0], Exception):
            logger.error(
                "Trade history poller ended with an error: %s",
                results[0],
                extra={"destination": self.exchange.name, "pair": self.pair.name},
            )
        logger.info(
            "Trade history polling stopped",
            extra={"destination": self.exchange.name, "pair": self.pair.name},
        )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_once(self) -> int:
        """Run one fetch/merge/evict cycle and return the number of merged trades."""
        started = time.monotonic()
        batch: list[Trade] | None = None
        try:
            batch = await self.exchange.get_trades(self._last_checked, self.pair)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Trade fetch failed for %s %s: %s",
                self.exchange.name,
                self.pair.name,
                exc,
                extra={
                    "destination": self.exchange.name,
                    "pair": self.pair.name,
                    "error_reason": type(exc).__name__,
                },
            )
        finally:
            self._last_checked = self._clock() - self._fetch_slack

        merged = self.window.merge(batch) if batch else 0
        self.window.evict_older_than(self._clock() - self._retention)

        logger.debug(
            "Trade history poll complete",
            extra={
                "destination": self.exchange.name,
                "pair": self.pair.name,
                "trades_merged": merged,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return merged

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass
