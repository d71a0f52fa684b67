"""FastAPI dependencies resolving objects built by the application lifespan."""

from __future__ import annotations

from fastapi import Request

from stockdash.services.market_data_service import MarketDataService


def get_market_data_service(request: Request) -> MarketDataService:
    """Return the process-wide service stored on ``app.state``.

    Tests override this dependency with a fake service.
    """

    return request.app.state.market_data_service
