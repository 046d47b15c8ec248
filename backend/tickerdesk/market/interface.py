"""Abstract interfaces for market data sources."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Protocol

import httpx


class StreamConnection(Protocol):
    """One open streaming connection carrying JSON frames (text, or UTF-8 bytes).

    ``recv()`` raises StreamClosed when the connection ends, whichever side
    closed it.
    """

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


class MarketDataSource(ABC):
    """Contract for market data providers.

    A source supplies the two transports MarketStore needs: an HTTP client
    rooted at the REST proxy (``/quote/{symbol}``, ``/profile/{symbol}``,
    ``/market-status``) and a factory for the shared trade stream.

    Lifecycle:
        source = FinnhubDataSource(...)   # or SimulatorDataSource()
        store = MarketStore(source)
        # ... app runs ...
        await store.shutdown()            # calls source.aclose()
    """

    @abstractmethod
    def http_client(self) -> httpx.AsyncClient:
        """Return the client used for every REST request. Created once, reused."""

    @property
    @abstractmethod
    def streaming_enabled(self) -> bool:
        """Whether connect_stream() can be expected to work (e.g. a token is set)."""

    @abstractmethod
    async def connect_stream(self) -> StreamConnection:
        """Open a new streaming connection.

        Raises StreamError (or OSError) if the connection cannot be made.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Release the HTTP client and any other resources. Safe to call twice."""
