"""Unit tests for MarketDataService.

The provider client is replaced by an in-memory fake so these tests cover
caching, retries, validation and search without HTTP or quota waits.
"""

from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock

import pytest

from stockdash.adapters.market_data.base import AbstractMarketDataClient
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.core.config import AppSettings
from stockdash.core.errors import (
    ClassifiedError,
    ErrorKind,
    QueueClearedError,
    ValidationAppError,
)
from stockdash.schemas.market import PriceBar, PriceSeries, SeriesMetadata, Ticker
from stockdash.services.market_data_service import (
    MarketDataService,
    normalize_symbol,
    rank_search_results,
    retry_delay,
    should_retry,
    validate_date_range,
)
from stockdash.utils.simple_cache import SimpleTTLCache

JAN_1 = date(2024, 1, 1)
JAN_31 = date(2024, 1, 31)


def _ticker(symbol: str, name: str | None = None) -> Ticker:
    return Ticker(symbol=symbol, name=name or f"{symbol} Inc.")


def _series(symbol: str) -> PriceSeries:
    return PriceSeries(
        symbol=symbol,
        bars=[PriceBar(date=date(2024, 1, 2), open=1.0, high=2.0, low=0.5, close=1.5, volume=100)],
        metadata=SeriesMetadata(status="OK", results_count=1),
    )


class FakeMarketDataClient(AbstractMarketDataClient):
    """Scripted client: each call pops the next outcome for its key."""

    def __init__(
        self,
        tickers: list[Ticker] | None = None,
        outcomes: dict[str, list] | None = None,
    ) -> None:
        self.tickers = tickers or []
        self.outcomes = outcomes or {}
        self.ticker_calls = 0
        self.bar_calls: list[str] = []

    async def list_tickers(self, *, market="stocks", ticker_type="CS", active=True, max_pages=1):
        self.ticker_calls += 1
        script = self.outcomes.get("tickers")
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
        return list(self.tickers)

    async def get_daily_bars(self, symbol, start, end):
        self.bar_calls.append(symbol)
        script = self.outcomes.get(symbol)
        if script:
            outcome = script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return _series(symbol)


def _service(client: FakeMarketDataClient, **overrides) -> MarketDataService:
    return MarketDataService(
        client=client,
        scheduler=RequestScheduler(),
        cache=SimpleTTLCache(ttl_seconds=300),
        app_settings=AppSettings(**overrides),
        sleep=AsyncMock(),
    )


def _error(kind: ErrorKind) -> ClassifiedError:
    return ClassifiedError.of(kind, f"{kind.value} happened")


class TestRetryPolicy:
    @pytest.mark.parametrize("kind", [ErrorKind.RATE_LIMIT, ErrorKind.UNAUTHORIZED])
    def test_never_retries_quota_and_credential_errors(self, kind: ErrorKind) -> None:
        assert should_retry(_error(kind), 0, 5) is False

    @pytest.mark.parametrize("kind", [ErrorKind.NETWORK_ERROR, ErrorKind.API_ERROR, ErrorKind.NOT_FOUND])
    def test_retries_other_kinds_within_budget(self, kind: ErrorKind) -> None:
        assert should_retry(_error(kind), 0, 2) is True
        assert should_retry(_error(kind), 1, 2) is True
        assert should_retry(_error(kind), 2, 2) is False

    def test_never_retries_cleared_or_unclassified_errors(self) -> None:
        assert should_retry(QueueClearedError(), 0, 2) is False
        assert should_retry(RuntimeError("boom"), 0, 2) is False

    def test_retry_delay_doubles_and_caps(self) -> None:
        assert [retry_delay(n, 1.0, 30.0) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


class TestValidation:
    @pytest.mark.parametrize("raw, expected", [("aapl", "AAPL"), (" msft ", "MSFT"), ("brk.b", "BRK.B")])
    def test_normalize_symbol_accepts_valid(self, raw: str, expected: str) -> None:
        assert normalize_symbol(raw) == expected

    @pytest.mark.parametrize("raw", ["", "TOOLONG", "AB1", "BRK.ABC", "A-B"])
    def test_normalize_symbol_rejects_invalid(self, raw: str) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            normalize_symbol(raw)

        assert exc_info.value.code == "invalid_stock_symbol"

    def test_inverted_range_is_rejected(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            validate_date_range(JAN_31, JAN_1, 5)

        assert exc_info.value.code == "invalid_date_range"

    def test_single_day_range_is_allowed(self) -> None:
        validate_date_range(JAN_1, JAN_1, 5)

    def test_range_longer_than_max_years_is_rejected(self) -> None:
        validate_date_range(date(2019, 1, 31), JAN_31, 5)

        with pytest.raises(ValidationAppError) as exc_info:
            validate_date_range(date(2019, 1, 30), JAN_31, 5)

        assert exc_info.value.code == "date_range_too_large"

    def test_leap_day_end_date(self) -> None:
        validate_date_range(date(2019, 2, 28), date(2024, 2, 29), 5)

        with pytest.raises(ValidationAppError):
            validate_date_range(date(2019, 2, 27), date(2024, 2, 29), 5)


class TestSearch:
    def test_ranking_prefix_then_exact_then_alphabetical(self) -> None:
        tickers = [
            _ticker("AAPL", "Apple Inc."),
            _ticker("APP", "AppLovin Corp"),
            _ticker("MAPP", "Mapp Holdings"),
            _ticker("AP", "Ampco-Pittsburgh"),
            _ticker("ZZZ", "Zapp Electric"),
        ]

        ranked = rank_search_results("ap", tickers, 10)

        assert [t.symbol for t in ranked] == ["AP", "APP", "AAPL", "MAPP", "ZZZ"]

    def test_limit_applies_before_sorting(self) -> None:
        tickers = [_ticker("XAB"), _ticker("YAB"), _ticker("AB")]

        ranked = rank_search_results("ab", tickers, 2)

        assert [t.symbol for t in ranked] == ["XAB", "YAB"]

    def test_name_match_is_case_insensitive(self) -> None:
        ranked = rank_search_results("MICRO", [_ticker("MSFT", "Microsoft Corp")], 10)

        assert [t.symbol for t in ranked] == ["MSFT"]

    @pytest.mark.asyncio
    async def test_short_query_returns_nothing_without_loading(self) -> None:
        client = FakeMarketDataClient(tickers=[_ticker("A")])
        service = _service(client)

        assert await service.search_tickers("a") == []
        assert client.ticker_calls == 0

    @pytest.mark.asyncio
    async def test_ticker_list_is_loaded_once(self) -> None:
        client = FakeMarketDataClient(tickers=[_ticker("AAPL", "Apple Inc."), _ticker("MSFT", "Microsoft Corp")])
        service = _service(client)

        first = await service.search_tickers("apple")
        second = await service.search_tickers("micro")

        assert [t.symbol for t in first] == ["AAPL"]
        assert [t.symbol for t in second] == ["MSFT"]
        assert client.ticker_calls == 1

    @pytest.mark.asyncio
    async def test_popular_tickers_keep_fixed_order(self) -> None:
        client = FakeMarketDataClient(
            tickers=[_ticker("NVDA"), _ticker("AAPL"), _ticker("IBM"), _ticker("MSFT")]
        )
        service = _service(client)

        popular = await service.popular_tickers()

        assert [t.symbol for t in popular] == ["AAPL", "MSFT", "NVDA"]

    @pytest.mark.asyncio
    async def test_ticker_load_retries_network_errors(self) -> None:
        client = FakeMarketDataClient(
            tickers=[_ticker("AAPL")],
            outcomes={"tickers": [_error(ErrorKind.NETWORK_ERROR), _error(ErrorKind.NETWORK_ERROR)]},
        )
        service = _service(client)

        tickers = await service.get_all_tickers()

        assert [t.symbol for t in tickers] == ["AAPL"]
        assert client.ticker_calls == 3
        assert service._sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_ticker_load_is_not_cached(self) -> None:
        client = FakeMarketDataClient(
            tickers=[_ticker("AAPL")],
            outcomes={"tickers": [_error(ErrorKind.API_ERROR)]},
        )
        service = _service(client, tickers_max_retries=0)

        with pytest.raises(ClassifiedError):
            await service.get_all_tickers()
        tickers = await service.get_all_tickers()

        assert [t.symbol for t in tickers] == ["AAPL"]
        assert client.ticker_calls == 2


class TestGetPrices:
    @pytest.mark.asyncio
    async def test_second_request_is_served_from_cache(self) -> None:
        client = FakeMarketDataClient()
        service = _service(client)

        first = await service.get_prices("aapl", JAN_1, JAN_31)
        second = await service.get_prices("AAPL", JAN_1, JAN_31)

        assert client.bar_calls == ["AAPL"]
        assert first.cached is False
        assert second.cached is True
        assert second.bars == first.bars

    @pytest.mark.asyncio
    async def test_different_range_is_a_cache_miss(self) -> None:
        client = FakeMarketDataClient()
        service = _service(client)

        await service.get_prices("AAPL", JAN_1, JAN_31)
        await service.get_prices("AAPL", JAN_1, date(2024, 2, 1))

        assert client.bar_calls == ["AAPL", "AAPL"]

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self) -> None:
        client = FakeMarketDataClient(outcomes={"AAPL": [_error(ErrorKind.RATE_LIMIT)]})
        service = _service(client)

        with pytest.raises(ClassifiedError) as exc_info:
            await service.get_prices("AAPL", JAN_1, JAN_31)

        assert exc_info.value.kind is ErrorKind.RATE_LIMIT
        assert client.bar_calls == ["AAPL"]
        service._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_is_retried_once(self) -> None:
        client = FakeMarketDataClient(outcomes={"AAPL": [_error(ErrorKind.NETWORK_ERROR)]})
        service = _service(client, retry_initial_delay_seconds=0.5)

        series = await service.get_prices("AAPL", JAN_1, JAN_31)

        assert series.symbol == "AAPL"
        assert client.bar_calls == ["AAPL", "AAPL"]
        service._sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_retry_budget_exhausted_raises_last_error(self) -> None:
        client = FakeMarketDataClient(
            outcomes={"AAPL": [_error(ErrorKind.API_ERROR), _error(ErrorKind.API_ERROR)]}
        )
        service = _service(client)

        with pytest.raises(ClassifiedError) as exc_info:
            await service.get_prices("AAPL", JAN_1, JAN_31)

        assert exc_info.value.kind is ErrorKind.API_ERROR
        assert len(client.bar_calls) == 2

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self) -> None:
        client = FakeMarketDataClient(outcomes={"AAPL": [_error(ErrorKind.UNAUTHORIZED)]})
        service = _service(client)

        with pytest.raises(ClassifiedError):
            await service.get_prices("AAPL", JAN_1, JAN_31)
        series = await service.get_prices("AAPL", JAN_1, JAN_31)

        assert series.cached is False
        assert client.bar_calls == ["AAPL", "AAPL"]

    @pytest.mark.asyncio
    async def test_invalid_input_never_reaches_the_client(self) -> None:
        client = FakeMarketDataClient()
        service = _service(client)

        with pytest.raises(ValidationAppError):
            await service.get_prices("NOT-A-SYMBOL", JAN_1, JAN_31)
        with pytest.raises(ValidationAppError):
            await service.get_prices("AAPL", JAN_31, JAN_1)

        assert client.bar_calls == []


class TestGetMultiplePrices:
    @pytest.mark.asyncio
    async def test_partial_failure_is_reported_per_symbol(self) -> None:
        not_found = ClassifiedError.of(ErrorKind.NOT_FOUND, "Stock symbol ZZZZ not found")
        client = FakeMarketDataClient(outcomes={"ZZZZ": [not_found, not_found]})
        service = _service(client)

        result = await service.get_multiple_prices(["aapl", "zzzz", "msft"], JAN_1, JAN_31)

        assert [s.symbol for s in result.series] == ["AAPL", "MSFT"]
        assert len(result.errors) == 1
        assert result.errors[0].symbol == "ZZZZ"
        assert result.errors[0].code == "not_found"
        assert result.errors[0].message == "Stock symbol ZZZZ not found"

    @pytest.mark.asyncio
    async def test_duplicates_are_collapsed(self) -> None:
        client = FakeMarketDataClient()
        service = _service(client)

        result = await service.get_multiple_prices(["AAPL", "aapl", "MSFT"], JAN_1, JAN_31)

        assert [s.symbol for s in result.series] == ["AAPL", "MSFT"]
        assert client.bar_calls == ["AAPL", "MSFT"]

    @pytest.mark.asyncio
    async def test_more_than_max_symbols_is_rejected(self) -> None:
        client = FakeMarketDataClient()
        service = _service(client)

        with pytest.raises(ValidationAppError) as exc_info:
            await service.get_multiple_prices(["AAPL", "MSFT", "NVDA", "TSLA"], JAN_1, JAN_31)

        assert exc_info.value.code == "stock_limit_exceeded"
        assert client.bar_calls == []

    @pytest.mark.asyncio
    async def test_empty_symbol_list_is_rejected(self) -> None:
        service = _service(FakeMarketDataClient())

        with pytest.raises(ValidationAppError) as exc_info:
            await service.get_multiple_prices([], JAN_1, JAN_31)

        assert exc_info.value.code == "no_symbols"

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self) -> None:
        client = FakeMarketDataClient(outcomes={"MSFT": [RuntimeError("bug")]})
        service = _service(client)

        with pytest.raises(RuntimeError):
            await service.get_multiple_prices(["AAPL", "MSFT"], JAN_1, JAN_31)


class TestSchedulerPassthrough:
    @pytest.mark.asyncio
    async def test_status_and_clear_delegate_to_scheduler(self) -> None:
        service = _service(FakeMarketDataClient())

        status = service.rate_limit_status()

        assert status.requests_in_window == 0
        assert status.max_requests == 5
        assert service.queue_stats().total_queued == 0
        assert service.clear_queue() == 0
