from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from stockdash.api.dependencies import get_market_data_service
from stockdash.core.errors import ValidationAppError
from stockdash.schemas.market import MultiPriceResult, PriceSeries, Ticker
from stockdash.services.market_data_service import MarketDataService

router = APIRouter(tags=["Stocks"])

ServiceDep = Annotated[MarketDataService, Depends(get_market_data_service)]


def _parse_symbols(raw: str) -> list[str]:
    symbols = [part.strip() for part in raw.split(",") if part.strip()]
    if not symbols:
        raise ValidationAppError(
            code="no_symbols",
            message="At least one stock symbol is required.",
        )
    return symbols


@router.get("/tickers/search", response_model=list[Ticker])
async def search_tickers(
    service: ServiceDep,
    q: str = Query(..., description="Symbol or company name fragment."),
    limit: int | None = Query(None, ge=1, le=50, description="Maximum results."),
) -> list[Ticker]:
    """Search US common stocks by symbol or name.

    The first search loads the ticker list from the provider (one quota
    slot); later searches run against the cached list.
    """
    return await service.search_tickers(q, limit=limit)


@router.get("/tickers/popular", response_model=list[Ticker])
async def popular_tickers(service: ServiceDep) -> list[Ticker]:
    """Well-known symbols for quick selection, in a fixed order."""
    return await service.popular_tickers()


@router.get("/stocks/prices", response_model=MultiPriceResult)
async def get_multiple_prices(
    service: ServiceDep,
    symbols: str = Query(..., description="Comma-separated symbols, e.g. AAPL,MSFT."),
    start: date = Query(..., description="First day (YYYY-MM-DD)."),
    end: date = Query(..., description="Last day (YYYY-MM-DD), inclusive."),
) -> MultiPriceResult:
    """Daily bars for up to three symbols.

    Symbols that fail are reported in ``errors`` while the others are
    still returned.
    """
    return await service.get_multiple_prices(_parse_symbols(symbols), start, end)


@router.get("/stocks/{symbol}/prices", response_model=PriceSeries)
async def get_prices(
    symbol: str,
    service: ServiceDep,
    start: date = Query(..., description="First day (YYYY-MM-DD)."),
    end: date = Query(..., description="Last day (YYYY-MM-DD), inclusive."),
) -> PriceSeries:
    """Daily bars for a single symbol.

    Provider failures surface with the status mapped from their error kind
    (429 rate limit, 404 unknown symbol, 504 timeout, 502 otherwise).
    """
    return await service.get_prices(symbol, start, end)
