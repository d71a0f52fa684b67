"""Pydantic schemas for normalized market data."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field


class Ticker(BaseModel):
    """A tradable US instrument from the provider's reference data."""

    symbol: str = Field(..., description="Ticker symbol (e.g., 'AAPL').")
    name: str = Field(..., description="Company or instrument name.")
    market: str = Field("stocks", description="Market the instrument trades on.")
    locale: str = Field("us", description="Market locale.")
    active: bool = Field(True, description="Whether the instrument is actively traded.")
    type: str = Field("CS", description="Instrument type, 'CS' for common stock.")
    primary_exchange: str | None = Field(
        default=None,
        description="MIC of the primary listing exchange.",
    )


class PriceBar(BaseModel):
    """One daily OHLCV bar."""

    date: dt.date = Field(..., description="Trading day (UTC calendar date of the bar start).")
    open: float
    high: float
    low: float
    close: float
    volume: float
    volume_weighted_price: float | None = Field(
        default=None,
        description="Volume weighted average price, when the provider sends it.",
    )
    transactions: int | None = Field(
        default=None,
        description="Number of trades in the bar, when the provider sends it.",
    )


class SeriesMetadata(BaseModel):
    """Provider-side facts about a price series."""

    delayed: bool = Field(
        False,
        description="True when the provider flagged the data as delayed (status DELAYED).",
    )
    status: str | None = Field(default=None, description="Raw provider status.")
    query_count: int | None = None
    results_count: int | None = None


class PriceSeries(BaseModel):
    """Daily bars for one symbol over a date range.

    An empty ``bars`` list is a valid result (no trading days in range).
    """

    symbol: str
    bars: list[PriceBar] = Field(default_factory=list)
    metadata: SeriesMetadata = Field(default_factory=SeriesMetadata)
    cached: bool = Field(
        False,
        description="True when served from the response cache.",
    )


class SymbolError(BaseModel):
    """Failure for one symbol of a multi-symbol request."""

    symbol: str
    code: str
    message: str


class MultiPriceResult(BaseModel):
    """Outcome of fetching several symbols; partial success is allowed."""

    series: list[PriceSeries] = Field(default_factory=list)
    errors: list[SymbolError] = Field(default_factory=list)
