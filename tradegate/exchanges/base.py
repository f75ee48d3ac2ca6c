"""Exchange adapter contract.

Every exchange is fronted by an adapter that turns its HTTP/JSON API into the
shared market models. Adapters are collaborators of the gateway core: the core
only needs their cadence metadata (the ``Destination`` protocol) and the three
read operations below.

Example:
    class KrakenExchange(ExchangeAdapter):
        name = "kraken"
        supported_pairs = (CurrencyPair(base="BTC", quote="EUR"),)

        async def get_depth(self, pair):
            response = await self.http.get(self, f"{BASE}/Depth?pair={...}")
            ...

Adapters report every failure as ``DataNotAvailableError``; the facade also
normalizes anything else they raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tradegate.clock import MICROS_PER_SECOND
from tradegate.models.market import CurrencyPair, Depth, Ticker, Trade

if TYPE_CHECKING:
    from tradegate.config.destination_policies import DestinationPolicy
    from tradegate.proxy.http import ProxiedHttpClient


@runtime_checkable
class Destination(Protocol):
    """Rate-limit identity of an exchange endpoint. Intervals are microseconds."""

    name: str
    update_interval: int
    minimum_request_interval: int
    parallelism_limit: int
    proxy_allowed: bool


class ExchangeAdapter(ABC):
    """Abstract base class for exchange adapters.

    Class Attributes:
        name: Unique lowercase identifier ("kraken", "bitstamp").
        update_interval: Minimum time between two live fetches of the same call (µs).
        minimum_request_interval: Minimum time between two requests from one
            egress identity (µs).
        proxy_allowed: Whether requests may be routed through the proxy pool.
        max_parallel_proxy_requests: Concurrent proxied requests allowed.
        supported_pairs: Pairs the exchange trades.
    """

    name: str = "exchange"
    update_interval: int = 15 * MICROS_PER_SECOND
    minimum_request_interval: int = MICROS_PER_SECOND // 10
    proxy_allowed: bool = False
    max_parallel_proxy_requests: int = 1
    supported_pairs: tuple[CurrencyPair, ...] = ()
    http: ProxiedHttpClient | None = None

    @property
    def parallelism_limit(self) -> int:
        return self.max_parallel_proxy_requests

    def bind_transport(self, http: ProxiedHttpClient) -> None:
        """Attach the shared proxied HTTP transport used for requests."""
        self.http = http

    def apply_policy(self, policy: DestinationPolicy) -> None:
        """Override the class-level cadence with a configured policy."""
        self.update_interval = policy.update_interval
        self.minimum_request_interval = policy.minimum_request_interval
        self.proxy_allowed = policy.proxy_allowed
        self.max_parallel_proxy_requests = policy.max_parallel_proxy_requests

    def is_supported_pair(self, pair: CurrencyPair) -> bool:
        return pair in self.supported_pairs

    def find_pair(self, name: str) -> CurrencyPair | None:
        """Look up a supported pair by its ``BASE_QUOTE`` name (any separator)."""
        try:
            wanted = CurrencyPair.parse(name)
        except ValueError:
            return None
        return wanted if wanted in self.supported_pairs else None

    @abstractmethod
    async def get_depth(self, pair: CurrencyPair) -> Depth:
        """Current order book for *pair*."""

    @abstractmethod
    async def get_trades(self, since_micros: int, pair: CurrencyPair) -> list[Trade]:
        """Trades with ``timestamp >= since_micros``, sorted ascending."""

    @abstractmethod
    async def get_ticker(self, pair: CurrencyPair) -> Ticker:
        """Ticker summary for *pair*."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"
