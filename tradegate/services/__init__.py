"""Service layer: the market data facade."""

from tradegate.services.market_data import MarketDataService

__all__ = ["MarketDataService"]
