"""Read-only market data endpoints backed by the MarketDataService facade.

- GET /exchanges
- GET /exchanges/{name}/depth/{pair}
- GET /exchanges/{name}/spread/{pair}
- GET /exchanges/{name}/ticker/{pair}
- GET /exchanges/{name}/trades/{pair}?since=<µs>
- GET /tickers/{pair} - aggregate over every exchange trading the pair
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Query

from tradegate.clock import MICROS_PER_HOUR, now_micros
from tradegate.models.market import CurrencyPair
from tradegate.models.responses import ApiResponse

if TYPE_CHECKING:
    from tradegate.services.market_data import MarketDataService


def create_market_router(market_data: MarketDataService) -> APIRouter:
    """Factory that creates the market data router bound to *market_data*."""

    router = APIRouter(tags=["market"])

    @router.get("/exchanges")
    async def list_exchanges() -> dict:
        return ApiResponse.ok(
            [
                {
                    "name": exchange.name,
                    "pairs": [pair.name for pair in exchange.supported_pairs],
                    "update_interval_us": exchange.update_interval,
                    "minimum_request_interval_us": exchange.minimum_request_interval,
                    "proxy_allowed": exchange.proxy_allowed,
                }
                for exchange in market_data.exchanges
            ]
        )

    @router.get("/exchanges/{name}/depth/{pair}")
    async def depth(name: str, pair: str) -> dict:
        return ApiResponse.ok(await market_data.get_depth_by_name(name, pair))

    @router.get("/exchanges/{name}/spread/{pair}")
    async def spread(name: str, pair: str) -> dict:
        exchange = market_data.get_exchange(name)
        currency_pair = market_data.resolve_pair(exchange, pair)
        value = await market_data.get_spread(exchange, currency_pair)
        return ApiResponse.ok({"spread": value}, exchange=exchange.name, pair=currency_pair.name)

    @router.get("/exchanges/{name}/ticker/{pair}")
    async def ticker(name: str, pair: str) -> dict:
        exchange = market_data.get_exchange(name)
        currency_pair = market_data.resolve_pair(exchange, pair)
        return ApiResponse.ok(await market_data.get_ticker(exchange, currency_pair))

    @router.get("/exchanges/{name}/trades/{pair}")
    async def trades(name: str, pair: str, since: int | None = Query(default=None, ge=0)) -> dict:
        exchange = market_data.get_exchange(name)
        currency_pair = market_data.resolve_pair(exchange, pair)
        since_micros = since if since is not None else now_micros() - MICROS_PER_HOUR
        result = await market_data.get_trades(exchange, currency_pair, since_micros)
        return ApiResponse.ok(result, count=len(result), since=since_micros)

    @router.get("/tickers/{pair}")
    async def tickers(pair: str) -> dict:
        try:
            currency_pair = CurrencyPair.parse(pair)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return ApiResponse.ok(await market_data.get_tickers(currency_pair))

    return router
