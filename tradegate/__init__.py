"""tradegate: caching and proxy dispatch core for multi-exchange market data."""

from tradegate.context import GatewayContext, build_context
from tradegate.services.market_data import MarketDataService

__all__ = ["GatewayContext", "MarketDataService", "build_context"]

__version__ = "0.1.0"
