"""Polygon.io market-data client adapter.

Every HTTP call is submitted to the shared ``RequestScheduler`` so the
provider quota is never exceeded by this process.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urljoin

import httpx

from stockdash.adapters.market_data.base import AbstractMarketDataClient
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.core.errors import ClassifiedError, ErrorDetails, ErrorKind
from stockdash.core.logging import scrub_url
from stockdash.schemas.market import PriceBar, PriceSeries, SeriesMetadata, Ticker

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.polygon.io"

TICKERS_PATH = "/v3/reference/tickers"
AGGREGATES_PATH = "/v2/aggs/ticker/{symbol}/range/1/day/{start}/{end}"

STATUS_OK = "OK"
STATUS_DELAYED = "DELAYED"
STATUS_ERROR = "ERROR"

MSG_INVALID_API_KEY = "Invalid or missing API key. Please check your configuration."
MSG_RATE_LIMIT_EXCEEDED = "API rate limit exceeded. Please wait before making more requests."


def _bar_date(timestamp_ms: int | float) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()


def normalize_bar(raw: dict[str, Any]) -> PriceBar:
    """Map a provider aggregate (o/h/l/c/v/vw/n/t) to a PriceBar.

    Args:
        raw: One element of the aggregates ``results`` array.

    Returns:
        PriceBar with ``t`` (epoch milliseconds) converted to a UTC date.
    """
    return PriceBar(
        date=_bar_date(raw["t"]),
        open=raw["o"],
        high=raw["h"],
        low=raw["l"],
        close=raw["c"],
        volume=raw["v"],
        volume_weighted_price=raw.get("vw"),
        transactions=raw.get("n"),
    )


def normalize_ticker(raw: dict[str, Any]) -> Ticker:
    return Ticker(
        symbol=raw["ticker"],
        name=raw.get("name") or raw["ticker"],
        market=raw.get("market", "stocks"),
        locale=raw.get("locale", "us"),
        active=bool(raw.get("active", False)),
        type=raw.get("type", ""),
        primary_exchange=raw.get("primary_exchange"),
    )


class PolygonClient(AbstractMarketDataClient):
    """Client for the Polygon.io reference and aggregates endpoints.

    Uses ``httpx.AsyncClient``. Each call, body download included, is capped
    at ``timeout_seconds`` in total. Failures are raised as ``ClassifiedError``;
    nothing is retried here.
    """

    def __init__(
        self,
        api_key: str | None,
        scheduler: RequestScheduler,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 10.0,
        tickers_page_size: int = 1000,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Polygon.io API key.
            scheduler: Shared scheduler every call is queued through.
            base_url: Provider base URL.
            timeout_seconds: Total deadline for each HTTP call, body included.
            tickers_page_size: ``limit`` sent to the tickers endpoint.
            http_client: Optional pre-built client (tests inject a mock
                transport here). It is not closed by ``aclose``.

        Raises:
            ClassifiedError: UNAUTHORIZED when no API key is configured.
        """
        if not api_key:
            raise ClassifiedError.of(
                ErrorKind.UNAUTHORIZED,
                MSG_INVALID_API_KEY,
                details={"hint": "Set the POLYGON_API_KEY environment variable"},
            )

        self._api_key = api_key
        self.scheduler = scheduler
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.tickers_page_size = tickers_page_size
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "User-Agent": "stockdash/0.1",
            },
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def list_tickers(
        self,
        *,
        market: str = "stocks",
        ticker_type: str = "CS",
        active: bool = True,
        max_pages: int = 1,
    ) -> list[Ticker]:
        params = {
            "type": ticker_type,
            "market": market,
            "active": "true" if active else "false",
            "limit": str(self.tickers_page_size),
            "sort": "ticker",
        }
        url = self.base_url + TICKERS_PATH
        tickers: list[Ticker] = []

        for page in range(max(1, max_pages)):
            data = await self.scheduler.schedule(lambda u=url, p=params: self._request(u, p))
            status = data.get("status")
            if status not in (STATUS_OK, STATUS_DELAYED):
                raise ClassifiedError.of(
                    ErrorKind.API_ERROR,
                    f"API returned error status: {status}",
                    details={"provider_status": str(status), "page": page + 1},
                )
            results = data.get("results") or []
            tickers.extend(
                normalize_ticker(raw)
                for raw in results
                if raw.get("market") == market
                and raw.get("locale") == "us"
                and (raw.get("active") or not active)
                and raw.get("type") == ticker_type
            )

            next_url = data.get("next_url")
            if not next_url:
                break
            # next_url already carries the cursor and filters
            url, params = urljoin(self.base_url + "/", next_url), {}

        logger.info(
            "polygon.tickers_loaded",
            extra={"count": len(tickers), "pages": page + 1},
        )
        return tickers

    async def get_daily_bars(self, symbol: str, start: date, end: date) -> PriceSeries:
        symbol = symbol.upper()
        url = self.base_url + AGGREGATES_PATH.format(
            symbol=symbol,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        params = {"adjusted": "true", "sort": "asc", "limit": "5000"}

        data = await self.scheduler.schedule(lambda: self._request(url, params, symbol=symbol))

        status = data.get("status")
        if status == STATUS_ERROR:
            raise ClassifiedError.of(
                ErrorKind.API_ERROR,
                f"API returned error status: {status}",
                details={"symbol": symbol, "provider_status": status},
            )
        if status not in (STATUS_OK, STATUS_DELAYED):
            raise ClassifiedError.of(
                ErrorKind.API_ERROR,
                f"API returned unexpected status: {status}",
                details={"symbol": symbol, "provider_status": str(status)},
            )

        metadata = SeriesMetadata(
            delayed=status == STATUS_DELAYED,
            status=status,
            query_count=data.get("queryCount"),
            results_count=data.get("resultsCount"),
        )
        results = data.get("results") or []
        try:
            bars = [normalize_bar(raw) for raw in results]
        except (KeyError, TypeError, ValueError) as exc:
            raise ClassifiedError.of(
                ErrorKind.API_ERROR,
                f"Malformed aggregate bar for {symbol}: {exc}",
                details={"symbol": symbol},
            ) from exc

        if metadata.delayed:
            logger.info("polygon.delayed_data", extra={"symbol": symbol, "bars": len(bars)})

        return PriceSeries(symbol=data.get("ticker") or symbol, bars=bars, metadata=metadata)

    async def _request(
        self,
        url: str,
        params: dict[str, str],
        *,
        symbol: str | None = None,
    ) -> dict[str, Any]:
        """Perform one GET and return the decoded JSON object.

        Runs inside the scheduler, so exactly one of these is in flight.

        Raises:
            ClassifiedError: On transport failure, timeout, non-2xx status or
                a body that is not a JSON object.
        """
        query = {**params, "apiKey": self._api_key}
        try:
            response = await asyncio.wait_for(
                self._http.get(url, params=query, timeout=self.timeout_seconds),
                timeout=self.timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning(
                "polygon.request_timeout",
                extra={"symbol": symbol, "timeout_seconds": self.timeout_seconds},
            )
            raise ClassifiedError.of(
                ErrorKind.NETWORK_ERROR,
                f"Request timeout after {self.timeout_seconds}s",
                details={"timeout_seconds": self.timeout_seconds},
            ) from exc
        except httpx.HTTPError as exc:
            raise ClassifiedError.of(
                ErrorKind.NETWORK_ERROR,
                f"Network request failed: {scrub_url(str(exc))}",
            ) from exc

        logger.debug(
            "polygon.response",
            extra={"url": scrub_url(str(response.url)), "http_status": response.status_code},
        )

        if not response.is_success:
            raise self._classify_http_error(response, symbol)

        try:
            data = response.json()
        except ValueError as exc:
            raise ClassifiedError.of(
                ErrorKind.API_ERROR,
                "Provider returned a non-JSON body",
                details={"http_status": response.status_code},
            ) from exc

        if not isinstance(data, dict):
            raise ClassifiedError.of(
                ErrorKind.API_ERROR,
                "Provider returned an unexpected body shape",
                details={"http_status": response.status_code},
            )
        return data

    def _classify_http_error(self, response: httpx.Response, symbol: str | None) -> ClassifiedError:
        status_code = response.status_code
        details: ErrorDetails = {"http_status": status_code}
        if symbol:
            details["symbol"] = symbol

        if status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                details["retry_after"] = float(retry_after)
            return ClassifiedError.of(ErrorKind.RATE_LIMIT, MSG_RATE_LIMIT_EXCEEDED, details)

        if status_code in (401, 403):
            return ClassifiedError.of(ErrorKind.UNAUTHORIZED, MSG_INVALID_API_KEY, details)

        if status_code == 404:
            message = f"Stock symbol {symbol} not found" if symbol else "Resource not found"
            return ClassifiedError.of(ErrorKind.NOT_FOUND, message, details)

        message = f"HTTP {status_code}: {response.reason_phrase}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            provider_message = body.get("error") or body.get("message")
            if isinstance(provider_message, str) and provider_message:
                message = provider_message
        return ClassifiedError.of(ErrorKind.API_ERROR, message, details)
