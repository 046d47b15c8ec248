"""Finnhub-backed data source: REST through the proxy, trades over websockets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .errors import StreamClosed, StreamError
from .interface import MarketDataSource, StreamConnection

logger = logging.getLogger(__name__)


class WebSocketStream:
    """Adapts a websockets client connection to StreamConnection.

    Close frames (and abrupt drops) surface as StreamClosed carrying the
    received close code, 1006 when no close frame arrived.
    """

    def __init__(self, ws: Any) -> None:
        self._ws = ws

    async def send(self, message: str) -> None:
        try:
            await self._ws.send(message)
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def recv(self) -> str | bytes:
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise _closed(e) from e

    async def close(self) -> None:
        try:
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("Ignoring error while closing stream: %s", e)


def _closed(exc: ConnectionClosed) -> StreamClosed:
    frame = exc.rcvd
    if frame is None:
        return StreamClosed(1006, "connection dropped")
    return StreamClosed(frame.code, frame.reason)


class FinnhubDataSource(MarketDataSource):
    """MarketDataSource backed by Finnhub.

    REST calls go through a same-origin proxy (``proxy_url``) that adds the
    API key; the trade stream connects to ``wss://ws.finnhub.io?token=...``
    directly. Free tier allows ~60 REST calls/min, so the scheduler defaults
    stay conservative.
    """

    def __init__(
        self,
        api_key: str,
        proxy_url: str,
        ws_url: str = "wss://ws.finnhub.io",
        *,
        timeout: float = 8.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._proxy_url = proxy_url.rstrip("/")
        self._ws_url = ws_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def streaming_enabled(self) -> bool:
        return bool(self._api_key)

    def http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._proxy_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"accept": "application/json"},
            )
        return self._client

    async def connect_stream(self) -> StreamConnection:
        if not self._api_key:
            raise StreamError("no API token configured for streaming")
        url = f"{self._ws_url}?token={self._api_key}"
        try:
            ws = await websockets.connect(url, ping_interval=20, open_timeout=self._timeout)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise StreamError(f"connect to {self._ws_url} failed: {e}") from e
        logger.info("Connected to %s", self._ws_url)
        return WebSocketStream(ws)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
