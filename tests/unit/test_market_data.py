"""Unit tests for the MarketDataService facade."""

import asyncio
from decimal import Decimal

import pytest

from tests.fakes import (
    BTC_USD,
    ETH_BTC,
    FakeExchange,
    ManualClock,
    make_depth,
    make_ticker,
    make_trade,
    unavailable,
)
from tradegate.middleware.error_handler import (
    DataNotAvailableError,
    NoProxyAvailableError,
    UnknownExchangeError,
)
from tradegate.services.market_data import MarketDataService

SECOND = 1_000_000
HOUR = 3600 * SECOND
NOW = 100 * HOUR


def _service(*exchanges: FakeExchange, clock: ManualClock | None = None) -> MarketDataService:
    service = MarketDataService(clock=clock or ManualClock(now=NOW))
    for exchange in exchanges:
        service.register_exchange(exchange)
    return service


async def _wait_for_first_poll(exchange: FakeExchange) -> None:
    for _ in range(100):
        if exchange.calls["trades"]:
            return
        await asyncio.sleep(0)


class TestRegistry:
    """Test exchange and pair resolution."""

    def test_get_exchange_case_insensitive(self):
        alpha = FakeExchange("alpha")
        service = _service(alpha)
        assert service.get_exchange("alpha") is alpha
        assert service.get_exchange("ALPHA") is alpha

    def test_unknown_exchange(self):
        service = _service(FakeExchange("alpha"))
        with pytest.raises(UnknownExchangeError):
            service.get_exchange("nope")

    def test_unknown_exchange_is_data_not_available(self):
        assert issubclass(UnknownExchangeError, DataNotAvailableError)

    def test_resolve_pair(self):
        alpha = FakeExchange("alpha")
        service = _service(alpha)
        assert service.resolve_pair(alpha, "btc-usd") == BTC_USD
        with pytest.raises(UnknownExchangeError):
            service.resolve_pair(alpha, "ETH_BTC")
        with pytest.raises(UnknownExchangeError):
            service.resolve_pair(alpha, "garbage")

    def test_exchanges_listing(self):
        alpha, beta = FakeExchange("alpha"), FakeExchange("beta")
        service = _service(alpha, beta)
        assert service.exchanges == [alpha, beta]


class TestDepth:
    """Test cached depth reads."""

    @pytest.mark.asyncio
    async def test_depth_cached_for_update_interval(self):
        clock = ManualClock(now=0)
        exchange = FakeExchange(update_interval=15 * SECOND)
        service = _service(exchange, clock=clock)

        first = await service.get_depth(exchange, BTC_USD)
        assert exchange.calls["depth"] == 1

        clock.now = 5 * SECOND
        assert await service.get_depth(exchange, BTC_USD) is first
        assert exchange.calls["depth"] == 1

        clock.now = 16 * SECOND
        await service.get_depth(exchange, BTC_USD)
        assert exchange.calls["depth"] == 2

    @pytest.mark.asyncio
    async def test_get_depth_by_name(self):
        exchange = FakeExchange("alpha")
        service = _service(exchange)
        depth = await service.get_depth_by_name("Alpha", "BTC/USD")
        assert depth.best_bid.price == Decimal("99")

    @pytest.mark.asyncio
    async def test_get_depth_by_name_unknown_pair(self):
        service = _service(FakeExchange("alpha"))
        with pytest.raises(UnknownExchangeError):
            await service.get_depth_by_name("alpha", "DOGE_EUR")

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_call(self):
        exchange = FakeExchange()
        service = _service(exchange)
        results = await asyncio.gather(*(service.get_depth(exchange, BTC_USD) for _ in range(10)))
        assert exchange.calls["depth"] == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_one_call_lock_per_key(self, monkeypatch):
        exchange = FakeExchange()
        service = _service(exchange)
        created: list[asyncio.Lock] = []
        lock_type = asyncio.Lock

        def counting_lock() -> asyncio.Lock:
            lock = lock_type()
            created.append(lock)
            return lock

        monkeypatch.setattr(asyncio, "Lock", counting_lock)
        for _ in range(3):
            await service.get_depth(exchange, BTC_USD)
        await service.get_ticker(exchange, BTC_USD)

        assert len(created) == 2

    @pytest.mark.asyncio
    async def test_adapter_error_is_normalized(self):
        exchange = FakeExchange()
        exchange.failures["depth"] = RuntimeError("boom")
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError) as exc_info:
            await service.get_depth(exchange, BTC_USD)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.details["destination"] == "alpha"

    @pytest.mark.asyncio
    async def test_no_proxy_available_is_normalized(self):
        exchange = FakeExchange()
        exchange.failures["depth"] = NoProxyAvailableError("empty pool")
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError):
            await service.get_depth(exchange, BTC_USD)

    @pytest.mark.asyncio
    async def test_data_not_available_passes_through(self):
        exchange = FakeExchange()
        error = unavailable("maintenance")
        exchange.failures["depth"] = error
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError) as exc_info:
            await service.get_depth(exchange, BTC_USD)
        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_none_result_is_not_cached(self):
        exchange = FakeExchange()
        exchange.depth = None
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError):
            await service.get_depth(exchange, BTC_USD)

        exchange.depth = make_depth()
        assert await service.get_depth(exchange, BTC_USD) == exchange.depth
        assert exchange.calls["depth"] == 2

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self):
        exchange = FakeExchange()
        exchange.failures["depth"] = unavailable()
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError):
            await service.get_depth(exchange, BTC_USD)
        del exchange.failures["depth"]
        await service.get_depth(exchange, BTC_USD)
        assert exchange.calls["depth"] == 2


class TestSpreadAndTicker:
    @pytest.mark.asyncio
    async def test_spread_is_ask_minus_bid(self):
        exchange = FakeExchange()
        exchange.depth = make_depth(bid="99.5", ask="101.25")
        service = _service(exchange)
        assert await service.get_spread(exchange, BTC_USD) == Decimal("1.75")

    @pytest.mark.asyncio
    async def test_spread_needs_both_sides(self):
        exchange = FakeExchange()
        exchange.depth = make_depth(bid=None)
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError):
            await service.get_spread(exchange, BTC_USD)

    @pytest.mark.asyncio
    async def test_spread_reuses_cached_depth(self):
        exchange = FakeExchange()
        service = _service(exchange)
        await service.get_depth(exchange, BTC_USD)
        await service.get_spread(exchange, BTC_USD)
        assert exchange.calls["depth"] == 1

    @pytest.mark.asyncio
    async def test_ticker_cached_separately_from_depth(self):
        exchange = FakeExchange()
        service = _service(exchange)
        await service.get_depth(exchange, BTC_USD)
        await service.get_ticker(exchange, BTC_USD)
        await service.get_ticker(exchange, BTC_USD)
        assert exchange.calls["depth"] == 1
        assert exchange.calls["ticker"] == 1


class TestAggregates:
    """Test get_tickers/get_bids/get_asks across exchanges."""

    @pytest.mark.asyncio
    async def test_failures_and_unsupported_pairs_are_excluded(self):
        alpha = FakeExchange("alpha")
        beta = FakeExchange("beta")
        beta.failures["ticker"] = unavailable()
        gamma = FakeExchange("gamma", pairs=(ETH_BTC,))
        delta = FakeExchange("delta")
        delta.ticker = make_ticker(bid="98", ask="102")
        service = _service(alpha, beta, gamma, delta)

        tickers = await service.get_tickers(BTC_USD)

        assert sorted(tickers) == ["alpha", "delta"]
        assert gamma.calls["ticker"] == 0

    @pytest.mark.asyncio
    async def test_bids_and_asks(self):
        alpha = FakeExchange("alpha")
        delta = FakeExchange("delta")
        delta.ticker = make_ticker(bid="98", ask="102")
        service = _service(alpha, delta)

        assert await service.get_bids(BTC_USD) == {"alpha": Decimal("99"), "delta": Decimal("98")}
        assert await service.get_asks(BTC_USD) == {"alpha": Decimal("101"), "delta": Decimal("102")}

    @pytest.mark.asyncio
    async def test_all_failing_gives_empty_result(self):
        alpha = FakeExchange("alpha")
        alpha.failures["ticker"] = RuntimeError("down")
        service = _service(alpha)
        assert await service.get_tickers(BTC_USD) == {}


class TestTrades:
    """Test trade reads with and without an active trade history cache."""

    @pytest.mark.asyncio
    async def test_direct_call_without_cache(self):
        exchange = FakeExchange()
        exchange.trade_batches = [[make_trade(NOW - 5 * SECOND)]]
        service = _service(exchange)

        trades = await service.get_trades(exchange, BTC_USD, NOW - 10 * SECOND)

        assert [t.timestamp for t in trades] == [NOW - 5 * SECOND]
        assert exchange.trade_requests == [NOW - 10 * SECOND]

    @pytest.mark.asyncio
    async def test_direct_call_failure_normalized(self):
        exchange = FakeExchange()
        exchange.failures["trades"] = ValueError("bad payload")
        service = _service(exchange)
        with pytest.raises(DataNotAvailableError):
            await service.get_trades(exchange, BTC_USD, NOW)

    @pytest.mark.asyncio
    async def test_served_from_cache_when_window_covers_range(self):
        exchange = FakeExchange(update_interval=HOUR)
        service = _service(exchange)
        cache = service.activate_trade_cache(exchange, BTC_USD)
        try:
            await _wait_for_first_poll(exchange)
            cache.window.merge([make_trade(NOW - 30 * SECOND), make_trade(NOW - 20 * SECOND), make_trade(NOW - 10 * SECOND)])
            calls_before = exchange.calls["trades"]

            trades = await service.get_trades(exchange, BTC_USD, NOW - 20 * SECOND)

            assert [t.timestamp for t in trades] == [NOW - 20 * SECOND, NOW - 10 * SECOND]
            assert exchange.calls["trades"] == calls_before
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_falls_back_when_since_precedes_window(self):
        exchange = FakeExchange(update_interval=HOUR)
        service = _service(exchange)
        cache = service.activate_trade_cache(exchange, BTC_USD)
        try:
            await _wait_for_first_poll(exchange)
            cache.window.merge([make_trade(NOW - 10 * SECOND)])
            exchange.trade_batches = [[make_trade(NOW - 50 * SECOND), make_trade(NOW - 10 * SECOND)]]

            trades = await service.get_trades(exchange, BTC_USD, NOW - 60 * SECOND)

            assert len(trades) == 2
            assert exchange.trade_requests[-1] == NOW - 60 * SECOND
        finally:
            await service.close()


class TestTradeCacheLifecycle:
    @pytest.mark.asyncio
    async def test_activate_is_idempotent(self):
        exchange = FakeExchange(update_interval=HOUR)
        service = _service(exchange)
        first = service.activate_trade_cache(exchange, BTC_USD)
        second = service.activate_trade_cache(exchange, BTC_USD)
        assert first is second
        assert service.is_trade_cache_active(exchange, BTC_USD)
        await service.close()

    @pytest.mark.asyncio
    async def test_deactivate_stops_poller(self):
        exchange = FakeExchange(update_interval=HOUR)
        service = _service(exchange)
        cache = service.activate_trade_cache(exchange, BTC_USD)

        await service.deactivate_trade_cache(exchange, BTC_USD)

        assert not cache.is_running
        assert not service.is_trade_cache_active(exchange, BTC_USD)
        await service.deactivate_trade_cache(exchange, BTC_USD)

    @pytest.mark.asyncio
    async def test_close_stops_every_poller(self):
        alpha = FakeExchange("alpha", update_interval=HOUR)
        beta = FakeExchange("beta", update_interval=HOUR)
        service = _service(alpha, beta)
        caches = [service.activate_trade_cache(e, BTC_USD) for e in (alpha, beta)]

        await service.close()

        assert all(not c.is_running for c in caches)
        assert service.get_stats()["trade_caches"] == []

    @pytest.mark.asyncio
    async def test_get_stats(self):
        exchange = FakeExchange("alpha", update_interval=HOUR)
        service = _service(exchange)
        await service.get_depth(exchange, BTC_USD)
        service.activate_trade_cache(exchange, BTC_USD)
        try:
            stats = service.get_stats()
            assert stats["exchanges"] == ["alpha"]
            assert stats["call_cache"]["entries"] == 1
            assert stats["trade_caches"][0]["pair"] == "BTC_USD"
            assert stats["trade_caches"][0]["running"] is True
        finally:
            await service.close()
