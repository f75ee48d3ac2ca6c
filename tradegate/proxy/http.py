"""Proxied HTTP GET transport for exchange adapters.

Routes each request through a proxy recommended by the scheduler, paces it
so the same proxy never hits a destination faster than its minimum request
interval, and feeds the outcome back into the proxy rating. Destinations that
do not allow proxies are queried directly, paced the same way.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable

import httpx

from tradegate.clock import MICROS_PER_SECOND, Clock, now_micros
from tradegate.exchanges.base import Destination
from tradegate.middleware.error_handler import DataNotAvailableError
from tradegate.proxy.scheduler import ProxyScheduler
from tradegate.proxy.types import ProxyEndpoint

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProxyEndpoint | None, httpx.Timeout], httpx.AsyncClient]

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
)


def default_client_factory(proxy: ProxyEndpoint | None, timeout: httpx.Timeout) -> httpx.AsyncClient:
    """Build an httpx client routed through *proxy* (direct when None)."""
    return httpx.AsyncClient(
        proxy=proxy.url if proxy is not None else None,
        timeout=timeout,
        follow_redirects=False,
    )


class ProxiedHttpClient:
    """GET requests for adapters, paced per (proxy, destination).

    Parameters
    ----------
    scheduler:
        Source of proxy recommendations and target of rating feedback.
    max_attempts:
        Proxies tried per request before giving up with DataNotAvailableError.
    connect_timeout / read_timeout:
        Per-request timeouts in seconds.
    client_factory:
        Builds the httpx client for a proxy (or a direct client for None).
    """

    def __init__(
        self,
        scheduler: ProxyScheduler,
        *,
        max_attempts: int = 5,
        connect_timeout: float = 15.0,
        read_timeout: float = 10.0,
        client_factory: ClientFactory = default_client_factory,
        clock: Clock = now_micros,
    ) -> None:
        self._scheduler = scheduler
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(read_timeout, connect=connect_timeout)
        self._client_factory = client_factory
        self._clock = clock
        self._clients: dict[ProxyEndpoint | None, httpx.AsyncClient] = {}
        self._semaphores: dict[str, asyncio.Semaphore] = {}
        self._direct_requests: dict[str, int] = {}

    async def get(
        self,
        destination: Destination,
        url: str,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Fetch *url* on behalf of *destination*.

        Raises
        ------
        NoProxyAvailableError
            If the destination allows proxies but none is active.
        DataNotAvailableError
            If every attempt failed at the transport level or with a 5xx.
        """
        async with self._semaphore(destination):
            if not destination.proxy_allowed:
                return await self._get_direct(destination, url, headers)
            return await self._get_proxied(destination, url, headers)

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _get_proxied(
        self,
        destination: Destination,
        url: str,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        last_error: Exception | None = None

        for attempt in range(1, self._max_attempts + 1):
            proxy = self._scheduler.recommend(destination)
            slot = self._reserve_slot(proxy.last_request(destination.name), destination)
            proxy.last_requests[destination.name] = slot
            await self._sleep_until(slot)

            started = time.monotonic()
            try:
                response = await self._client(proxy).get(url, headers=self._headers(headers))
            except httpx.TransportError as exc:
                last_error = exc
                self._scheduler.report_failure(proxy)
                logger.warning(
                    "Request via %s failed (attempt %d/%d): %s",
                    proxy.url,
                    attempt,
                    self._max_attempts,
                    exc,
                    extra={
                        "destination": destination.name,
                        "proxy_used": proxy.url,
                        "attempt": attempt,
                        "error_reason": type(exc).__name__,
                    },
                )
                continue

            if response.status_code >= 500:
                last_error = httpx.HTTPStatusError(
                    f"Server error {response.status_code}", request=response.request, response=response
                )
                self._scheduler.report_failure(proxy)
                logger.warning(
                    "Request via %s returned %d (attempt %d/%d)",
                    proxy.url,
                    response.status_code,
                    attempt,
                    self._max_attempts,
                    extra={"destination": destination.name, "proxy_used": proxy.url, "attempt": attempt},
                )
                continue

            self._scheduler.report_success(proxy)
            logger.debug(
                "GET %s via %s -> %d",
                url,
                proxy.url,
                response.status_code,
                extra={
                    "destination": destination.name,
                    "proxy_used": proxy.url,
                    "duration_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
            return response

        raise DataNotAvailableError(
            f"GET {url} failed after {self._max_attempts} attempts",
            destination=destination.name,
        ) from last_error

    async def _get_direct(
        self,
        destination: Destination,
        url: str,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        slot = self._reserve_slot(self._direct_requests.get(destination.name), destination)
        self._direct_requests[destination.name] = slot
        await self._sleep_until(slot)

        try:
            response = await self._client(None).get(url, headers=self._headers(headers))
        except httpx.TransportError as exc:
            raise DataNotAvailableError(
                f"GET {url} failed: {exc}", destination=destination.name
            ) from exc

        if response.status_code >= 500:
            raise DataNotAvailableError(
                f"GET {url} returned {response.status_code}", destination=destination.name
            )
        return response

    def _reserve_slot(self, last_request: int | None, destination: Destination) -> int:
        """Earliest send time (µs) at least ``minimum_request_interval`` after *last_request*.

        Callers store the returned slot before awaiting anything, so concurrent
        requests sharing a proxy queue up behind each other's slots.
        """
        now = self._clock()
        if last_request is None:
            return now
        return max(now, last_request + destination.minimum_request_interval)

    async def _sleep_until(self, slot: int) -> None:
        remaining = slot - self._clock()
        if remaining > 0:
            await asyncio.sleep(remaining / MICROS_PER_SECOND)

    def _semaphore(self, destination: Destination) -> asyncio.Semaphore:
        semaphore = self._semaphores.get(destination.name)
        if semaphore is None:
            semaphore = asyncio.Semaphore(max(1, destination.parallelism_limit))
            self._semaphores[destination.name] = semaphore
        return semaphore

    def _client(self, proxy: ProxyEndpoint | None) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None:
            client = self._client_factory(proxy, self._timeout)
            self._clients[proxy] = client
        return client

    @staticmethod
    def _headers(headers: dict[str, str] | None) -> dict[str, str]:
        merged = {"User-Agent": random.choice(USER_AGENTS)}
        if headers:
            merged.update(headers)
        return merged
