"""Public models for the gateway."""

from tradegate.models.market import CurrencyPair, Depth, DepthOrder, Ticker, Trade
from tradegate.models.responses import ApiResponse

__all__ = [
    "ApiResponse",
    "CurrencyPair",
    "Depth",
    "DepthOrder",
    "Ticker",
    "Trade",
]
