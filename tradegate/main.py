"""FastAPI application factory with lifespan management.

Startup: configure logging, build the gateway context (proxy pool, scheduler,
caches, facade), import proxies, start background pollers, mount routers.
Shutdown: stop trade history pollers and health checks, close HTTP clients.

Exchange adapters are supplied by the caller::

    app = create_app([KrakenExchange(), BitstampExchange()])
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tradegate.config.settings import GatewaySettings
from tradegate.context import build_context
from tradegate.exchanges.base import ExchangeAdapter
from tradegate.logging_config import configure_logging
from tradegate.middleware.error_handler import register_error_handlers
from tradegate.proxy.http import ClientFactory, default_client_factory
from tradegate.routers.health import create_health_router
from tradegate.routers.market import create_market_router

logger = logging.getLogger(__name__)


def create_app(
    exchanges: Sequence[ExchangeAdapter],
    settings: GatewaySettings | None = None,
    *,
    client_factory: ClientFactory = default_client_factory,
) -> FastAPI:
    """Create and configure the FastAPI application for *exchanges*."""
    settings = settings or GatewaySettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        logger.info("Starting tradegate on port %d with %d exchanges", settings.port, len(exchanges))

        context = build_context(settings, list(exchanges), client_factory=client_factory)
        await context.start()

        app.include_router(create_health_router(context))
        app.include_router(create_market_router(context.market_data))
        app.state.context = context

        logger.info("tradegate started")

        yield

        logger.info("Shutting down tradegate…")
        await context.close()
        logger.info("tradegate shut down")

    app = FastAPI(
        title="tradegate",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    return app
