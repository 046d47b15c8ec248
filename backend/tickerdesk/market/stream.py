"""SSE endpoint that relays ticker updates from the MarketStore."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from .models import Priority, TickerRecord
from .store import MarketStore, normalize_symbols

logger = logging.getLogger(__name__)


def create_stream_router(store: MarketStore) -> APIRouter:
    """Create the streaming router bound to ``store``.

    The factory lets us inject the store without globals; every call returns
    a fresh router.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/tickers")
    async def stream_tickers(
        request: Request,
        symbols: str = Query(..., description="Comma-separated ticker symbols"),
    ) -> StreamingResponse:
        """SSE feed of TickerRecord updates for the requested symbols.

        Events look like:

            data: {"symbol": "AAPL", "quote": {"c": 190.5, ...}, "profile": {...}, "logo": "..."}

        Cached records are sent first, then every REST refresh and live tick.
        """
        return StreamingResponse(
            _generate_events(store, request, normalize_symbols(symbols.split(","))),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.get("/status")
    async def stream_status(exchange: str = "US") -> dict:
        """Streaming connection state plus the (cached) exchange status."""
        status = await store.get_market_status(exchange)
        return {
            "connection": store.connection_state().value,
            "fatal": store.stream_fatal,
            "subscribed": store.stream_symbols(),
            "market": status.to_dict() if status else None,
        }

    return router


async def _generate_events(
    store: MarketStore,
    request: Request,
    symbols: list[str],
    interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Yield SSE-formatted ticker events until the client goes away.

    Registers interest on entry (high-priority prefetch, bus subscription,
    stream ref) and releases all of it on exit.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    updates: asyncio.Queue[TickerRecord] = asyncio.Queue()
    sub = store.subscribe(symbols, lambda _symbol, record: updates.put_nowait(record))
    store.prefetch(symbols, Priority.HIGH)
    await store.stream_subscribe(symbols)

    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s (%s)", client_ip, ",".join(symbols))

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            try:
                record = await asyncio.wait_for(updates.get(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            yield f"data: {json.dumps(record.to_dict())}\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        sub.close()
        await store.stream_unsubscribe(symbols)
