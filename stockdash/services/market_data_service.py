"""Market data service: caching, retry policy and search over provider data.

This service is the only consumer of the market-data client. It handles:
- Response caching (ticker list for a day, price series for minutes) so
  repeated views don't spend provider quota
- A bounded retry policy keyed off the classified error kind
- Client-side ticker search over the cached ticker list
- Input validation (symbols, date ranges, number of compared symbols)
- Multi-symbol fetches with per-symbol error reporting

Provider calls themselves are queued by the request scheduler inside the
client; this layer never talks to the network directly.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from typing import Awaitable, Callable, Iterable, TypeVar

from stockdash.adapters.market_data.base import AbstractMarketDataClient
from stockdash.adapters.rate_limit.base import QueueStats, StatusSnapshot
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.core.config import AppSettings, settings
from stockdash.core.errors import (
    AppError,
    ClassifiedError,
    ErrorKind,
    QueueClearedError,
    ValidationAppError,
)
from stockdash.schemas.market import MultiPriceResult, PriceSeries, SymbolError, Ticker
from stockdash.utils.simple_cache import SimpleTTLCache, build_cache_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

POPULAR_SYMBOLS = ("AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "META", "NVDA", "NFLX")

SYMBOL_PATTERN = re.compile(r"^[A-Z]{1,5}(\.[A-Z]{1,2})?$")

# Retrying these only burns quota or can never succeed
NON_RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.UNAUTHORIZED})

TICKERS_CACHE_KEY = build_cache_key("tickers", "stocks", "CS")


def should_retry(error: BaseException, failure_count: int, max_retries: int) -> bool:
    """Decide whether a failed provider call should be attempted again.

    Args:
        error: Exception raised by the failed attempt.
        failure_count: Retries already performed for this call (0 after the
            first failure).
        max_retries: Retry budget for this kind of call.

    Returns:
        False for rate limit and credential errors, cleared queues and
        anything that is not an application error; otherwise whether the
        budget allows another attempt.

    Examples:
        >>> should_retry(ClassifiedError.of(ErrorKind.RATE_LIMIT, "slow down"), 0, 2)
        False
        >>> should_retry(ClassifiedError.of(ErrorKind.NETWORK_ERROR, "timeout"), 1, 2)
        True
    """
    if isinstance(error, QueueClearedError):
        return False
    if not isinstance(error, ClassifiedError):
        return False
    if error.kind in NON_RETRYABLE_KINDS:
        return False
    return failure_count < max_retries


def retry_delay(attempt: int, initial_seconds: float, max_seconds: float) -> float:
    """Exponential backoff: ``initial * 2**attempt`` capped at ``max_seconds``."""
    return min(initial_seconds * (2 ** attempt), max_seconds)


def normalize_symbol(symbol: str) -> str:
    """Upper-case and validate a ticker symbol.

    Raises:
        ValidationAppError: If the symbol is not 1-5 letters with an
            optional 1-2 letter share class suffix (e.g., "BRK.B").
    """
    normalized = (symbol or "").strip().upper()
    if not SYMBOL_PATTERN.match(normalized):
        raise ValidationAppError(
            code="invalid_stock_symbol",
            message="Invalid stock symbol. Please enter a valid symbol.",
            details={"symbol": normalized},
        )
    return normalized


def validate_date_range(start: date, end: date, max_years: int) -> None:
    """Reject inverted ranges and ranges longer than ``max_years``.

    Raises:
        ValidationAppError: If the range is invalid.
    """
    if start > end:
        raise ValidationAppError(
            code="invalid_date_range",
            message="Start date must be on or before end date.",
        )
    try:
        earliest = end.replace(year=end.year - max_years)
    except ValueError:
        # Feb 29 minus N years
        earliest = end.replace(year=end.year - max_years, day=28)
    if start < earliest:
        raise ValidationAppError(
            code="date_range_too_large",
            message="Date range is too large. Please select a smaller range.",
            details={"max_years": max_years},
        )


def rank_search_results(query: str, tickers: Iterable[Ticker], limit: int) -> list[Ticker]:
    """Match tickers by symbol or name and order the first ``limit`` matches.

    Matches are case-insensitive substring hits on the symbol or the name.
    The first ``limit`` matches in list order are kept, then ordered with
    symbol-prefix matches first, exact symbol matches next, and the rest
    alphabetically by symbol.
    """
    term = query.strip().lower()
    matches: list[Ticker] = []
    for ticker in tickers:
        if term in ticker.symbol.lower() or term in ticker.name.lower():
            matches.append(ticker)
            if len(matches) >= limit:
                break

    def _sort_key(ticker: Ticker) -> tuple[bool, bool, str]:
        symbol = ticker.symbol.lower()
        return (not symbol.startswith(term), symbol != term, ticker.symbol)

    return sorted(matches, key=_sort_key)


class MarketDataService:
    """Cache-and-retry layer in front of the market-data client.

    Attributes:
        client: Provider client; every call it makes is queued by ``scheduler``.
        scheduler: Shared request scheduler, used here for status reporting.
        cache: TTL cache for provider responses.
    """

    def __init__(
        self,
        client: AbstractMarketDataClient,
        scheduler: RequestScheduler,
        cache: SimpleTTLCache,
        *,
        app_settings: AppSettings | None = None,
        tickers_max_pages: int = 1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the service with its dependencies.

        Args:
            client: Configured market-data client.
            scheduler: The scheduler the client submits through.
            cache: Cache instance for provider responses.
            app_settings: Limits, TTLs and retry budgets; defaults to global settings.
            tickers_max_pages: Ticker pages to load when filling the cache.
            sleep: Awaitable sleep used between retries.
        """
        self.client = client
        self.scheduler = scheduler
        self.cache = cache
        self.config = app_settings or settings.app
        self.tickers_max_pages = tickers_max_pages
        self._sleep = sleep

    async def _with_retry(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        max_retries: int,
    ) -> T:
        """Run ``fn`` and retry according to ``should_retry``.

        Raises:
            AppError: The last error once retrying is not allowed.
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except AppError as exc:
                if not should_retry(exc, attempt, max_retries):
                    logger.warning(
                        "market_data.failed",
                        extra={
                            "operation": operation,
                            "error_code": exc.code,
                            "attempts": attempt + 1,
                        },
                    )
                    raise
                delay = retry_delay(
                    attempt,
                    self.config.retry_initial_delay_seconds,
                    self.config.retry_max_delay_seconds,
                )
                logger.info(
                    "market_data.retry_scheduled",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "attempt": attempt + 1,
                        "delay_s": delay,
                    },
                )
                attempt += 1
                await self._sleep(delay)

    async def get_all_tickers(self) -> list[Ticker]:
        """Return the full ticker list, loading it once per TTL."""
        cached = self.cache.get(TICKERS_CACHE_KEY)
        if cached is not None:
            return cached

        tickers = await self._with_retry(
            "list_tickers",
            lambda: self.client.list_tickers(max_pages=self.tickers_max_pages),
            self.config.tickers_max_retries,
        )
        self.cache.set(
            TICKERS_CACHE_KEY,
            tickers,
            ttl_seconds=self.config.tickers_cache_ttl_seconds,
        )
        return tickers

    async def search_tickers(self, query: str, limit: int | None = None) -> list[Ticker]:
        """Search the cached ticker list; no provider call once it is loaded.

        Queries shorter than ``search_min_length`` return an empty list.
        """
        if not query or len(query.strip()) < self.config.search_min_length:
            return []
        tickers = await self.get_all_tickers()
        return rank_search_results(query, tickers, limit or self.config.search_max_results)

    async def popular_tickers(self) -> list[Ticker]:
        tickers = await self.get_all_tickers()
        by_symbol = {ticker.symbol: ticker for ticker in tickers}
        return [by_symbol[symbol] for symbol in POPULAR_SYMBOLS if symbol in by_symbol]

    async def get_prices(self, symbol: str, start: date, end: date) -> PriceSeries:
        """Daily bars for one symbol, served from cache when fresh.

        Raises:
            ValidationAppError: On an invalid symbol or date range.
            ClassifiedError: If the provider call fails after retries.
            QueueClearedError: If the queued call was cleared.
        """
        symbol = normalize_symbol(symbol)
        validate_date_range(start, end, self.config.max_date_range_years)

        cache_key = build_cache_key("prices", symbol, start.isoformat(), end.isoformat())
        cached = self.cache.get(cache_key)
        if cached is not None:
            return PriceSeries.model_validate({**cached, "cached": True})

        series = await self._with_retry(
            "get_daily_bars",
            lambda: self.client.get_daily_bars(symbol, start, end),
            self.config.prices_max_retries,
        )
        self.cache.set(
            cache_key,
            series.model_dump(),
            ttl_seconds=self.config.prices_cache_ttl_seconds,
        )
        return series

    async def get_multiple_prices(
        self,
        symbols: Iterable[str],
        start: date,
        end: date,
    ) -> MultiPriceResult:
        """Fetch several symbols; a failing symbol does not fail the others.

        Symbols are validated and de-duplicated first; requests are queued in
        the given order.

        Raises:
            ValidationAppError: On too many symbols, an invalid symbol or an
                invalid date range.
        """
        normalized: list[str] = []
        for symbol in symbols:
            value = normalize_symbol(symbol)
            if value not in normalized:
                normalized.append(value)

        if not normalized:
            raise ValidationAppError(
                code="no_symbols",
                message="At least one stock symbol is required.",
            )
        if len(normalized) > self.config.max_symbols:
            raise ValidationAppError(
                code="stock_limit_exceeded",
                message=f"At most {self.config.max_symbols} stocks can be compared at once.",
                details={"max_symbols": self.config.max_symbols},
            )
        validate_date_range(start, end, self.config.max_date_range_years)

        outcomes = await asyncio.gather(
            *(self.get_prices(symbol, start, end) for symbol in normalized),
            return_exceptions=True,
        )

        result = MultiPriceResult()
        for symbol, outcome in zip(normalized, outcomes):
            if isinstance(outcome, PriceSeries):
                result.series.append(outcome)
            elif isinstance(outcome, AppError):
                result.errors.append(
                    SymbolError(symbol=symbol, code=outcome.code, message=outcome.message)
                )
            else:
                raise outcome
        return result

    def rate_limit_status(self) -> StatusSnapshot:
        return self.scheduler.get_status()

    def queue_stats(self) -> QueueStats:
        return self.scheduler.get_queue_stats()

    def clear_queue(self) -> int:
        return self.scheduler.clear()
