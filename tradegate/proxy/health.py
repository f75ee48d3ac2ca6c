"""Background proxy validation.

Periodically sends a lightweight GET through every proxy in the pool. Passing
proxies are (re)activated, rated up and re-queued with the scheduler; failing
proxies are rated down, which deactivates them once they reach the minimum
rating.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from tradegate.proxy.http import ClientFactory, default_client_factory
from tradegate.proxy.pool import ProxyPool
from tradegate.proxy.scheduler import ProxyScheduler
from tradegate.proxy.types import ProxyEndpoint

logger = logging.getLogger(__name__)


class ProxyHealthChecker:
    """Validates proxies and feeds activation/rating changes back into the pool."""

    def __init__(
        self,
        pool: ProxyPool,
        scheduler: ProxyScheduler | None = None,
        *,
        test_url: str = "http://blanksite.com/",
        timeout_seconds: float = 10.0,
        concurrency: int = 50,
        interval_seconds: int = 600,
        client_factory: ClientFactory = default_client_factory,
    ) -> None:
        self._pool = pool
        self._scheduler = scheduler
        self._test_url = test_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._concurrency = concurrency
        self._interval_seconds = interval_seconds
        self._client_factory = client_factory

    async def check(self, proxy: ProxyEndpoint) -> bool:
        """Return True when *proxy* relays a GET to the test URL with status 200."""
        try:
            async with self._client_factory(proxy, self._timeout) as client:
                response = await client.get(self._test_url)
        except httpx.HTTPError:
            logger.debug("Health check failed for proxy: %s", proxy.url)
            return False
        return response.status_code == 200

    async def run_checks(self, proxies: list[ProxyEndpoint] | None = None) -> list[ProxyEndpoint]:
        """Test *proxies* (default: the whole pool) and return the passing ones."""
        candidates = proxies if proxies is not None else self._pool.all()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(proxy: ProxyEndpoint) -> bool:
            async with semaphore:
                return await self.check(proxy)

        results = await asyncio.gather(*(_bounded(p) for p in candidates))

        passed: list[ProxyEndpoint] = []
        for proxy, ok in zip(candidates, results):
            if ok:
                was_active = proxy.active
                proxy.rate_up()
                if self._scheduler is not None:
                    self._scheduler.reactivate(proxy)
                else:
                    proxy.activate()
                if not was_active:
                    logger.info("Proxy restored to active: %s", proxy.url)
                passed.append(proxy)
            else:
                proxy.rate_down()

        logger.info("Proxy health check: %d of %d passed", len(passed), len(candidates))
        return passed

    async def run_forever(self) -> None:
        """Re-check the pool every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.run_checks()
