from abc import ABC, abstractmethod
from datetime import date

from stockdash.schemas.market import PriceSeries, Ticker


class AbstractMarketDataClient(ABC):
	"""Interface for market-data providers returning normalized records."""

	@abstractmethod
	async def list_tickers(
		self,
		*,
		market: str = "stocks",
		ticker_type: str = "CS",
		active: bool = True,
		max_pages: int = 1,
	) -> list[Ticker]:
		"""List tradable instruments.

		Args:
			market: Provider market filter (e.g., "stocks").
			ticker_type: Instrument type filter (e.g., "CS" for common stock).
			active: Only return actively traded instruments.
			max_pages: Upper bound on result pages fetched.

		Returns:
			list[Ticker]: Possibly empty list of instruments.

		Raises:
			ClassifiedError: If the provider call fails.
		"""
		...

	@abstractmethod
	async def get_daily_bars(self, symbol: str, start: date, end: date) -> PriceSeries:
		"""Fetch daily OHLCV bars for ``symbol`` between ``start`` and ``end`` inclusive.

		Returns:
			PriceSeries: Bars in ascending date order; empty when there is no data.

		Raises:
			ClassifiedError: If the provider call fails.
		"""
		...

	async def aclose(self) -> None:
		"""Release network resources."""
