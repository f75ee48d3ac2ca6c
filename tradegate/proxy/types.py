"""Proxy data models for the proxy pool and scheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

MAX_RATING = 10
MIN_RATING = -10


class ProxyKind(str, Enum):
    """Transport kind of an egress proxy."""

    HTTP = "http"
    SOCKS4 = "socks4"
    SOCKS5 = "socks5"


@dataclass(eq=False)
class ProxyEndpoint:
    """A single egress proxy with a quality rating and activation flag.

    Identity is the socket address: two endpoints with the same host and port
    are the same proxy. ``last_requests`` maps destination names to the time
    (µs) of the last request actually sent through this proxy.
    """

    host: str
    port: int
    kind: ProxyKind = ProxyKind.HTTP
    rating: int = 0
    active: bool = True
    last_requests: dict[str, int] = field(default_factory=dict)

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)

    @property
    def url(self) -> str:
        return f"{self.kind.value}://{self.host}:{self.port}"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProxyEndpoint):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False

    def rate_up(self) -> None:
        """Raise the rating by one, capped at MAX_RATING."""
        self.rating = min(self.rating + 1, MAX_RATING)

    def rate_down(self) -> None:
        """Lower the rating by one; reaching MIN_RATING deactivates the proxy."""
        self.rating = max(self.rating - 1, MIN_RATING)
        if self.rating == MIN_RATING and self.active:
            self.active = False
            logger.warning("Proxy deactivated at minimum rating: %s", self.url, extra={"proxy_used": self.url})

    def last_request(self, destination: str) -> int | None:
        return self.last_requests.get(destination)
