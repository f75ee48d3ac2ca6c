"""Market data facade.

Single entry point for reads across all registered exchanges:

- depth and ticker reads go through the call result cache, one live request
  per (exchange, operation, pair) and update interval even when many
  coroutines ask at once,
- trade reads are answered from an activated trade history cache when its
  window covers the requested range, otherwise by a direct adapter call,
- aggregates query every exchange and leave out the ones that fail.

Every adapter failure surfaces as ``DataNotAvailableError``. Nothing is
retried here; retry and backoff belong to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any, TypeVar

from tradegate.cache.call_cache import CallKey, CallResultCache
from tradegate.cache.trade_history import TradeHistoryCache
from tradegate.clock import Clock, micros_to_iso, now_micros
from tradegate.exchanges.base import ExchangeAdapter
from tradegate.middleware.error_handler import DataNotAvailableError, UnknownExchangeError
from tradegate.models.market import CurrencyPair, Depth, Ticker, Trade

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketDataService:
    """Composes exchange adapters with the call result and trade history caches.

    Parameters
    ----------
    call_cache:
        Shared call result cache (a private one is created when omitted).
    trade_cache_options:
        Keyword arguments for every ``TradeHistoryCache`` this service creates
        (retention, initial_lookback, fetch_slack, poll_margin).
    clock:
        Microsecond clock, passed on to the caches this service creates.
    """

    def __init__(
        self,
        call_cache: CallResultCache | None = None,
        *,
        trade_cache_options: dict[str, Any] | None = None,
        clock: Clock = now_micros,
    ) -> None:
        self._clock = clock
        self._call_cache = call_cache if call_cache is not None else CallResultCache(clock=clock)
        self._trade_cache_options = dict(trade_cache_options or {})
        self._exchanges: dict[str, ExchangeAdapter] = {}
        self._trade_caches: dict[tuple[str, CurrencyPair], TradeHistoryCache] = {}
        self._inflight: dict[CallKey, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Exchange registry
    # ------------------------------------------------------------------

    def register_exchange(self, exchange: ExchangeAdapter) -> None:
        self._exchanges[exchange.name] = exchange
        logger.info("Registered exchange %s", exchange.name, extra={"destination": exchange.name})

    @property
    def exchanges(self) -> list[ExchangeAdapter]:
        return list(self._exchanges.values())

    @property
    def call_cache(self) -> CallResultCache:
        return self._call_cache

    def get_exchange(self, name: str) -> ExchangeAdapter:
        exchange = self._exchanges.get(name.lower()) or self._exchanges.get(name)
        if exchange is None:
            raise UnknownExchangeError(f"There is no exchange registered with the name: {name}")
        return exchange

    def resolve_pair(self, exchange: ExchangeAdapter, pair_name: str) -> CurrencyPair:
        pair = exchange.find_pair(pair_name)
        if pair is None:
            raise UnknownExchangeError(
                f"Exchange {exchange.name} doesn't support the currency pair: {pair_name}"
            )
        return pair

    # ------------------------------------------------------------------
    # Depth / spread / ticker
    # ------------------------------------------------------------------

    async def get_depth(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> Depth:
        return await self._cached_call(exchange, "depth", pair, lambda: exchange.get_depth(pair))

    async def get_depth_by_name(self, exchange_name: str, pair_name: str) -> Depth:
        exchange = self.get_exchange(exchange_name)
        return await self.get_depth(exchange, self.resolve_pair(exchange, pair_name))

    async def get_spread(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> Decimal:
        """Best ask minus best bid."""
        depth = await self.get_depth(exchange, pair)
        if depth.best_bid is None or depth.best_ask is None:
            raise DataNotAvailableError(
                f"No buy and sell orders in the current depth of {exchange.name} "
                f"with currency pair {pair.name}",
                destination=exchange.name,
                pair=pair.name,
            )
        return depth.best_ask.price - depth.best_bid.price

    async def get_ticker(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> Ticker:
        return await self._cached_call(exchange, "ticker", pair, lambda: exchange.get_ticker(pair))

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    async def get_trades(
        self,
        exchange: ExchangeAdapter,
        pair: CurrencyPair,
        since_micros: int,
    ) -> list[Trade]:
        """Trades since *since_micros*, from the trade history cache when it covers them."""
        cache = self._trade_caches.get((exchange.name, pair))
        if cache is not None:
            newest = cache.window.newest_timestamp
            if newest is not None and cache.window.contains(since_micros, newest):
                return cache.window.trades(start=since_micros)

        return await self._call(
            exchange, "trades", pair, lambda: exchange.get_trades(since_micros, pair)
        )

    def activate_trade_cache(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> TradeHistoryCache:
        """Start background trade polling for *pair* on *exchange* (idempotent)."""
        key = (exchange.name, pair)
        cache = self._trade_caches.get(key)
        if cache is None:
            cache = TradeHistoryCache(exchange, pair, clock=self._clock, **self._trade_cache_options)
            self._trade_caches[key] = cache
        cache.start()
        return cache

    async def deactivate_trade_cache(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> None:
        cache = self._trade_caches.pop((exchange.name, pair), None)
        if cache is not None:
            await cache.stop()

    def is_trade_cache_active(self, exchange: ExchangeAdapter, pair: CurrencyPair) -> bool:
        return (exchange.name, pair) in self._trade_caches

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def get_tickers(self, pair: CurrencyPair) -> dict[str, Ticker]:
        """Tickers for *pair* from every exchange that trades it; failures are left out."""
        candidates = [e for e in self._exchanges.values() if e.is_supported_pair(pair)]
        results = await asyncio.gather(
            *(self.get_ticker(exchange, pair) for exchange in candidates),
            return_exceptions=True,
        )

        tickers: dict[str, Ticker] = {}
        for exchange, result in zip(candidates, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Ticker from %s excluded from aggregate: %s",
                    exchange.name,
                    result,
                    extra={"destination": exchange.name, "pair": pair.name},
                )
                continue
            tickers[exchange.name] = result
        return tickers

    async def get_bids(self, pair: CurrencyPair) -> dict[str, Decimal]:
        """Best buy price per exchange."""
        return {name: ticker.bid for name, ticker in (await self.get_tickers(pair)).items()}

    async def get_asks(self, pair: CurrencyPair) -> dict[str, Decimal]:
        """Best sell price per exchange."""
        return {name: ticker.ask for name, ticker in (await self.get_tickers(pair)).items()}

    # ------------------------------------------------------------------
    # Lifecycle / stats
    # ------------------------------------------------------------------

    async def close(self) -> None:
        caches = list(self._trade_caches.values())
        self._trade_caches.clear()
        await asyncio.gather(*(cache.stop() for cache in caches))

    def get_stats(self) -> dict:
        return {
            "exchanges": sorted(self._exchanges),
            "call_cache": self._call_cache.get_stats(),
            "trade_caches": [
                {
                    "exchange": name,
                    "pair": pair.name,
                    "trades": len(cache.window),
                    "running": cache.is_running,
                    "newest": _iso_or_none(cache.window.newest_timestamp),
                    "last_checked": micros_to_iso(cache.last_checked),
                }
                for (name, pair), cache in self._trade_caches.items()
            ],
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _cached_call(
        self,
        exchange: ExchangeAdapter,
        operation: str,
        pair: CurrencyPair,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        key = CallKey.of(exchange, operation, pair)
        lock = self._inflight.get(key)
        if lock is None:
            lock = self._inflight[key] = asyncio.Lock()
        async with lock:
            cached = self._call_cache.lookup(exchange, operation, pair)
            if cached is not None:
                return cached
            result = await self._call(exchange, operation, pair, fetch)
            self._call_cache.store(exchange, operation, pair, result=result)
            return result

    async def _call(
        self,
        exchange: ExchangeAdapter,
        operation: str,
        pair: CurrencyPair,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        try:
            result = await fetch()
        except DataNotAvailableError:
            raise
        except Exception as exc:
            raise DataNotAvailableError(
                f"{operation} not available from {exchange.name} for {pair.name}: {exc}",
                destination=exchange.name,
                pair=pair.name,
            ) from exc

        if result is None:
            raise DataNotAvailableError(
                f"{operation} not available from {exchange.name} for {pair.name}",
                destination=exchange.name,
                pair=pair.name,
            )
        return result


def _iso_or_none(micros: int | None) -> str | None:
    return micros_to_iso(micros) if micros is not None else None
