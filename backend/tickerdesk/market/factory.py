"""Factory for creating the market store and its data source."""

from __future__ import annotations

import logging

from .config import MarketSettings
from .interface import MarketDataSource
from .store import MarketStore

logger = logging.getLogger(__name__)


def create_market_data_source(settings: MarketSettings) -> MarketDataSource:
    """Pick the data source from settings.

    - FINNHUB_API_KEY set and non-empty → FinnhubDataSource (real market data)
    - Otherwise → SimulatorDataSource (GBM simulation, no network)
    """
    if settings.api_key:
        from .finnhub_client import FinnhubDataSource

        logger.info("Market data source: Finnhub via %s", settings.proxy_url)
        return FinnhubDataSource(
            api_key=settings.api_key,
            proxy_url=settings.proxy_url,
            ws_url=settings.ws_url,
            timeout=settings.request_timeout,
        )

    from .simulator import SimulatorDataSource

    logger.info("Market data source: GBM Simulator")
    return SimulatorDataSource()


def create_market_store(settings: MarketSettings | None = None) -> MarketStore:
    """Build a MarketStore from ``settings`` (environment by default).

    No network I/O happens here; saved profiles are loaded if a profile
    store path is configured.
    """
    settings = settings or MarketSettings.from_env()
    return MarketStore(create_market_data_source(settings), settings)
