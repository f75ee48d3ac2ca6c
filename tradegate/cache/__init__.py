"""Caches: call results bounded by update intervals, rolling trade history."""

from tradegate.cache.call_cache import CachedCall, CallKey, CallResultCache
from tradegate.cache.trade_history import TradeHistoryCache, TradeWindow

__all__ = [
    "CachedCall",
    "CallKey",
    "CallResultCache",
    "TradeHistoryCache",
    "TradeWindow",
]
