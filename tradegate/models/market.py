"""Market data value objects shared by adapters, caches and the facade.

Prices and amounts are Decimals; timestamps are integer microseconds (UTC).
All models are frozen so they can be used as cache-key arguments and shared
between concurrent readers without copying.
"""

from __future__ import annotations

import re
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, field_validator

_PAIR_SEPARATORS = re.compile(r"[_/\-:]")


class CurrencyPair(BaseModel):
    """A traded instrument, e.g. BTC quoted in USD."""

    model_config = ConfigDict(frozen=True)

    base: str
    quote: str

    @field_validator("base", "quote")
    @classmethod
    def _upper(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("currency code must not be empty")
        return value

    @property
    def name(self) -> str:
        return f"{self.base}_{self.quote}"

    @classmethod
    def parse(cls, text: str) -> CurrencyPair:
        """Parse ``BTC_USD``, ``btc/usd`` or ``BTC-USD``."""
        parts = _PAIR_SEPARATORS.split(text.strip())
        if len(parts) != 2:
            raise ValueError(f"Cannot parse currency pair from '{text}'")
        return cls(base=parts[0], quote=parts[1])

    def __str__(self) -> str:
        return self.name


class Trade(BaseModel):
    """A single executed trade as reported by an exchange."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int  # microseconds
    price: Decimal
    amount: Decimal
    side: str | None = None  # "buy" | "sell" when the exchange reports it


class DepthOrder(BaseModel):
    """One price level of an order book."""

    model_config = ConfigDict(frozen=True)

    price: Decimal
    amount: Decimal


class Depth(BaseModel):
    """Order book snapshot. Bids are sorted best (highest) first, asks best (lowest) first."""

    model_config = ConfigDict(frozen=True)

    pair: CurrencyPair
    timestamp: int
    bids: tuple[DepthOrder, ...] = ()
    asks: tuple[DepthOrder, ...] = ()

    @property
    def best_bid(self) -> DepthOrder | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> DepthOrder | None:
        return self.asks[0] if self.asks else None


class Ticker(BaseModel):
    """Ticker summary for one pair on one exchange."""

    model_config = ConfigDict(frozen=True)

    pair: CurrencyPair
    timestamp: int
    last: Decimal
    bid: Decimal  # best buy price
    ask: Decimal  # best sell price
    high: Decimal | None = None
    low: Decimal | None = None
    volume: Decimal | None = None
