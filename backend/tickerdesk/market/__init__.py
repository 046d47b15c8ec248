"""Market data subsystem for tickerdesk.

Public API:
    MarketStore          - Façade: cache reads, prefetch/request, subscribe, streaming
    MarketSettings       - Tunables (TTLs, pacing, backoff), loadable from env
    create_market_store  - Factory that selects the Finnhub or simulator source
    create_stream_router - FastAPI router factory for the SSE endpoint
    Quote, Profile, MarketStatus, TickerRecord - Immutable data snapshots
    Priority, ConnectionState - Request tiers and stream states
"""

from .config import MarketSettings
from .factory import create_market_data_source, create_market_store
from .interface import MarketDataSource
from .models import ConnectionState, MarketStatus, Priority, Profile, Quote, TickerRecord
from .store import MarketStore
from .stream import create_stream_router

__all__ = [
    "ConnectionState",
    "MarketDataSource",
    "MarketSettings",
    "MarketStatus",
    "MarketStore",
    "Priority",
    "Profile",
    "Quote",
    "TickerRecord",
    "create_market_data_source",
    "create_market_store",
    "create_stream_router",
]
