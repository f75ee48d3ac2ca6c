"""Health, readiness and metrics endpoints.

- GET /health - service status + proxy pool stats
- GET /readiness - 200 only when exchanges are registered and, if proxies are
  configured, at least one of them is active
- GET /metrics - scheduler, call cache and trade history stats
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Response

from tradegate.models.responses import ApiResponse

if TYPE_CHECKING:
    from tradegate.context import GatewayContext


def create_health_router(context: GatewayContext) -> APIRouter:
    """Factory that creates the health router bound to *context*."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with proxy pool statistics."""
        return ApiResponse.ok(
            {
                "status": "healthy",
                "exchanges": len(context.market_data.exchanges),
                "proxy_pool": context.pool.get_stats(),
            }
        )

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe."""
        exchanges = len(context.market_data.exchanges)
        proxy_stats = context.pool.get_stats()
        proxies_ok = proxy_stats["total"] == 0 or proxy_stats["active"] > 0

        is_ready = exchanges > 0 and proxies_ok
        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={
                "ready": is_ready,
                "exchanges": exchanges,
                "active_proxies": proxy_stats["active"],
            },
            error=None if is_ready else "Service not ready",
        ).model_dump()

    @health_router.get("/metrics")
    async def metrics() -> dict:
        """Operational metrics endpoint."""
        return ApiResponse.ok(
            {
                "scheduler": context.scheduler.get_stats(),
                "market_data": context.market_data.get_stats(),
            }
        )

    return health_router
