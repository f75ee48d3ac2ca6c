"""Proxy package: pool, per-destination scheduling, health checks and proxied HTTP."""

from tradegate.proxy.health import ProxyHealthChecker
from tradegate.proxy.http import ProxiedHttpClient
from tradegate.proxy.pool import ProxyPool
from tradegate.proxy.scheduler import ProxyScheduler, Recommendation
from tradegate.proxy.types import MAX_RATING, MIN_RATING, ProxyEndpoint, ProxyKind

__all__ = [
    "MAX_RATING",
    "MIN_RATING",
    "ProxiedHttpClient",
    "ProxyEndpoint",
    "ProxyHealthChecker",
    "ProxyKind",
    "ProxyPool",
    "ProxyScheduler",
    "Recommendation",
]
