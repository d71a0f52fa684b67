"""Application factory for the FastAPI app.

Centralizes app construction (metadata, lifespan, middleware, handlers,
routers) so tests can build isolated instances.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from stockdash.adapters.market_data.factory import create_market_data_client
from stockdash.adapters.rate_limit.base import RateLimitConfig
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.api.routes import health_router, rate_limit_router, stocks_router
from stockdash.core.config import Settings, settings
from stockdash.core.exception_handlers import setup_exception_handlers
from stockdash.core.logging import configure_logging
from stockdash.core.middleware import request_id_middleware
from stockdash.services.market_data_service import MarketDataService
from stockdash.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)


def build_market_data_service(cfg: Settings) -> MarketDataService:
    """Wire scheduler, provider client, cache and service from settings.

    Raises:
        ClassifiedError: UNAUTHORIZED if no provider API key is configured.
    """
    scheduler = RequestScheduler(
        RateLimitConfig(
            max_requests=cfg.rate_limit.max_requests,
            window_seconds=cfg.rate_limit.window_seconds,
            floor_wait_seconds=cfg.rate_limit.floor_wait_seconds,
        )
    )
    client = create_market_data_client(scheduler, cfg.polygon)
    cache = SimpleTTLCache(
        ttl_seconds=cfg.app.prices_cache_ttl_seconds,
        max_entries=cfg.app.cache_max_entries,
    )
    return MarketDataService(
        client=client,
        scheduler=scheduler,
        cache=cache,
        app_settings=cfg.app,
        tickers_max_pages=cfg.polygon.tickers_max_pages,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # A service injected before startup (tests) is left alone.
    service = getattr(app.state, "market_data_service", None)
    owned = service is None
    if owned:
        service = build_market_data_service(settings)
        app.state.market_data_service = service
        logger.info("app.started", extra={"app_env": settings.app_env})
    try:
        yield
    finally:
        if owned:
            cleared = service.clear_queue()
            await service.scheduler.aclose()
            await service.client.aclose()
            logger.info("app.stopped", extra={"cleared_requests": cleared})


def create_app(service: MarketDataService | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        service: Optional pre-built service; when omitted the lifespan builds
            one from settings on startup.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Stock Dashboard API",
        description=(
            "Historical daily prices for up to three US stocks, fetched from "
            "Polygon.io through a rate-limited request queue (5 calls/minute "
            "on the free tier). Exposes ticker search, price series and the "
            "queue status needed for countdown feedback."
        ),
        version="0.1.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Stocks", "description": "Ticker search and price series."},
            {"name": "Rate limit", "description": "Provider quota and request queue."},
            {"name": "Health", "description": "Liveness checks."},
        ],
    )
    if service is not None:
        app.state.market_data_service = service

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(stocks_router, prefix="/v1")
    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    return app
