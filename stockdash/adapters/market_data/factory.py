"""Factory for creating market-data client instances."""

from stockdash.adapters.market_data.base import AbstractMarketDataClient
from stockdash.adapters.market_data.polygon_client import PolygonClient
from stockdash.adapters.rate_limit.scheduler import RequestScheduler
from stockdash.core.config import PolygonSettings, settings


def create_market_data_client(
    scheduler: RequestScheduler,
    polygon_settings: PolygonSettings | None = None,
) -> AbstractMarketDataClient:
    """Build the provider client from configuration.

    Args:
        scheduler: Scheduler every provider call is queued through.
        polygon_settings: Provider settings; defaults to the global settings.

    Returns:
        AbstractMarketDataClient: Configured Polygon client.

    Raises:
        ClassifiedError: UNAUTHORIZED if POLYGON_API_KEY is not set.
    """
    cfg = polygon_settings or settings.polygon
    return PolygonClient(
        api_key=cfg.api_key,
        scheduler=scheduler,
        base_url=cfg.base_url,
        timeout_seconds=cfg.timeout_seconds,
        tickers_page_size=cfg.tickers_page_size,
    )
