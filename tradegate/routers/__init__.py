"""HTTP routers for the query service."""

from tradegate.routers.health import create_health_router
from tradegate.routers.market import create_market_router

__all__ = ["create_health_router", "create_market_router"]
