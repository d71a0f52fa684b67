"""Market-data adapter layer - abstracts over the quote provider."""

from stockdash.adapters.market_data.base import AbstractMarketDataClient
from stockdash.adapters.market_data.factory import create_market_data_client
from stockdash.adapters.market_data.polygon_client import PolygonClient

__all__ = [
    "AbstractMarketDataClient",
    "PolygonClient",
    "create_market_data_client",
]
