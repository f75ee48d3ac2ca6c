"""Gateway context: every shared component, constructed once and passed around.

``build_context`` wires the proxy pool, scheduler, call cache, market data
facade, proxied HTTP transport and health checker from ``GatewaySettings``.
``start()`` launches the background tasks (proxy health checks, configured
trade history pollers); ``close()`` stops them and releases HTTP clients.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from tradegate.cache.call_cache import CallResultCache
from tradegate.clock import MICROS_PER_MILLI, MICROS_PER_SECOND, Clock, now_micros
from tradegate.config.destination_policies import load_destination_policies, resolve_policy
from tradegate.config.settings import GatewaySettings
from tradegate.exchanges.base import ExchangeAdapter
from tradegate.middleware.error_handler import UnknownExchangeError
from tradegate.proxy.health import ProxyHealthChecker
from tradegate.proxy.http import ClientFactory, ProxiedHttpClient, default_client_factory
from tradegate.proxy.pool import ProxyPool
from tradegate.proxy.scheduler import ProxyScheduler
from tradegate.services.market_data import MarketDataService

logger = logging.getLogger(__name__)


@dataclass
class GatewayContext:
    """Shared gateway state. One instance per process."""

    settings: GatewaySettings
    pool: ProxyPool
    scheduler: ProxyScheduler
    call_cache: CallResultCache
    market_data: MarketDataService
    http: ProxiedHttpClient
    health_checker: ProxyHealthChecker
    _background: list[asyncio.Task[None]] = field(default_factory=list)

    async def start(self) -> None:
        """Import proxies, start health checks and configured trade history pollers."""
        if self.settings.proxy_list_path:
            imported = await self.pool.import_csv(
                self.settings.proxy_list_path,
                self.settings.proxy_list_delimiter,
            )
            for proxy in imported:
                self.scheduler.register_proxy(proxy)

        if self.settings.proxy_health_check_enabled:
            self._background.append(
                asyncio.create_task(self.health_checker.run_forever(), name="proxy-health-check")
            )

        for entry in self.settings.trade_cache_pairs:
            exchange_name, _, pair_name = entry.partition(":")
            try:
                exchange = self.market_data.get_exchange(exchange_name)
                pair = self.market_data.resolve_pair(exchange, pair_name)
            except UnknownExchangeError as exc:
                logger.error("Cannot activate trade cache '%s': %s", entry, exc)
                continue
            self.market_data.activate_trade_cache(exchange, pair)

    async def close(self) -> None:
        """Stop every background task and close HTTP clients.

        Trade history pollers get ``graceful_shutdown_seconds`` to finish their
        current iteration before they are cancelled.
        """
        try:
            await asyncio.wait_for(
                self.market_data.close(),
                timeout=self.settings.graceful_shutdown_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Trade history pollers did not stop within %ds", self.settings.graceful_shutdown_seconds
            )

        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        await self.http.aclose()


def build_context(
    settings: GatewaySettings,
    exchanges: list[ExchangeAdapter],
    *,
    client_factory: ClientFactory = default_client_factory,
    clock: Clock = now_micros,
) -> GatewayContext:
    """Construct the shared components and register *exchanges* with them."""
    pool = ProxyPool()
    scheduler = ProxyScheduler(pool, clock=clock)
    call_cache = CallResultCache(clock=clock)
    market_data = MarketDataService(
        call_cache,
        trade_cache_options={
            "retention": settings.trade_retention_seconds * MICROS_PER_SECOND,
            "initial_lookback": settings.trade_initial_lookback_seconds * MICROS_PER_SECOND,
            "fetch_slack": settings.trade_fetch_slack_seconds * MICROS_PER_SECOND,
            "poll_margin": settings.trade_poll_margin_ms * MICROS_PER_MILLI,
        },
        clock=clock,
    )

    policies = load_destination_policies(settings.destination_policies_path)
    for exchange in exchanges:
        policy = resolve_policy(policies, exchange.name)
        if policy is not None:
            exchange.apply_policy(policy)
        market_data.register_exchange(exchange)
        if exchange.proxy_allowed:
            scheduler.register_destination(exchange)

    http = ProxiedHttpClient(
        scheduler,
        max_attempts=settings.http_max_attempts,
        connect_timeout=settings.http_connect_timeout_seconds,
        read_timeout=settings.http_read_timeout_seconds,
        client_factory=client_factory,
        clock=clock,
    )
    for exchange in exchanges:
        exchange.bind_transport(http)

    health_checker = ProxyHealthChecker(
        pool,
        scheduler,
        test_url=settings.proxy_test_url,
        timeout_seconds=settings.proxy_test_timeout_seconds,
        concurrency=settings.proxy_test_concurrency,
        interval_seconds=settings.proxy_health_check_interval_seconds,
        client_factory=client_factory,
    )

    return GatewayContext(
        settings=settings,
        pool=pool,
        scheduler=scheduler,
        call_cache=call_cache,
        market_data=market_data,
        http=http,
        health_checker=health_checker,
    )
