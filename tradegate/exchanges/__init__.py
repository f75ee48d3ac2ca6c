"""Exchange adapter contract."""

from tradegate.exchanges.base import Destination, ExchangeAdapter

__all__ = ["Destination", "ExchangeAdapter"]
