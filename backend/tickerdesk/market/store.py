"""MarketStore: the one object UI-facing code talks to."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from .backoff import RateLimitGate
from .bus import Callback, NotificationBus, Subscription
from .cache import MarketCache
from .config import MarketSettings
from .fetcher import Fetcher
from .interface import MarketDataSource
from .ledger import InflightLedger
from .models import (
    CacheEntry,
    CacheLookup,
    ConnectionState,
    DataKind,
    MarketStatus,
    Priority,
    Profile,
    QueueEntry,
    Quote,
    TickerRecord,
)
from .profile_store import ProfileStore
from .scheduler import PriorityScheduler
from .streaming import StreamingManager

logger = logging.getLogger(__name__)


def normalize_symbols(symbols: Iterable[str]) -> list[str]:
    """Upper-case, strip and de-duplicate, preserving order."""
    out: dict[str, None] = {}
    for symbol in symbols:
        cleaned = symbol.strip().upper()
        if cleaned:
            out[cleaned] = None
    return list(out)


class MarketStore:
    """Shared quote/profile cache and streaming coordinator.

    Owns the cache, in-flight ledger, priority scheduler, fetcher, streaming
    manager and notification bus. Callers only see this façade:

        store = MarketStore(source)
        store.prefetch(["AAPL", "MSFT"], "high")
        sub = store.subscribe(["AAPL"], on_update)
        await store.stream_subscribe(["AAPL"])
        quote = await store.request_quote("AAPL")
        ...
        sub()                                  # stop receiving updates
        await store.stream_unsubscribe(["AAPL"])
        await store.shutdown()

    Expected failures never raise out of here: missing data resolves to None
    and stream trouble shows up in connection_state(). Only programmer
    errors (such as an unknown priority) raise.
    """

    def __init__(
        self,
        source: MarketDataSource,
        settings: MarketSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.settings = settings or MarketSettings()
        s = self.settings
        self._source = source
        self._wall_clock = wall_clock

        profile_store = (
            ProfileStore(s.profile_store_path, key=s.profile_store_key, ttl=s.profile_ttl)
            if s.profile_store_path
            else None
        )
        self.bus = NotificationBus()
        self.cache = MarketCache(
            self.bus,
            quote_ttl=s.quote_ttl,
            profile_ttl=s.profile_ttl,
            clock=wall_clock,
            profile_store=profile_store,
        )
        self.cache.load_profiles()
        self.ledger = InflightLedger()
        self.gate = RateLimitGate(pause=s.rate_limit_pause, growth=s.rate_limit_growth, clock=clock)
        self.fetcher = Fetcher(
            source.http_client(),
            self.gate,
            timeout=s.request_timeout,
            max_attempts=s.max_attempts,
            retry_base=s.retry_base,
            retry_cap=s.retry_cap,
            retry_jitter=s.retry_jitter,
            sleep=sleep,
            rng=rng,
        )
        self.scheduler = PriorityScheduler(
            self._dispatch,
            self.gate,
            max_concurrent=s.max_concurrent,
            dispatch_interval=s.dispatch_interval,
            sleep=sleep,
        )
        self.streaming = StreamingManager(
            source.connect_stream,
            self.cache,
            reconnect_base=s.reconnect_base,
            reconnect_cap=s.reconnect_cap,
            sleep=sleep,
            on_missing_quote=self._on_missing_quote,
        )
        self._status: dict[str, CacheEntry[MarketStatus]] = {}
        self._closed = False

    # --- Cache reads ---

    def get_quote(self, symbol: str) -> CacheLookup:
        """Cached quote and freshness. Never blocks, never fetches."""
        return self.cache.get_quote(symbol.strip().upper())

    def get_profile(self, symbol: str) -> CacheLookup:
        return self.cache.get_profile(symbol.strip().upper())

    def get_ticker(self, symbol: str) -> TickerRecord | None:
        return self.cache.record(symbol.strip().upper())

    # --- Polling ---

    def prefetch(self, symbols: Iterable[str], priority: Priority | str = Priority.MEDIUM) -> None:
        """Fire-and-forget: queue quote and profile fetches for each symbol."""
        priority = Priority(priority)
        for symbol in normalize_symbols(symbols):
            self._enqueue(symbol, DataKind.QUOTE, priority)
            self._enqueue(symbol, DataKind.PROFILE, priority)

    async def request_quote(
        self,
        symbol: str,
        priority: Priority | str = Priority.MEDIUM,
        timeout: float | None = None,
    ) -> Quote | None:
        """Fresh quote now if cached, else the next one delivered, else None after ``timeout``."""
        return await self._request(symbol, DataKind.QUOTE, Priority(priority), timeout)

    async def request_profile(
        self,
        symbol: str,
        priority: Priority | str = Priority.MEDIUM,
        timeout: float | None = None,
    ) -> Profile | None:
        return await self._request(symbol, DataKind.PROFILE, Priority(priority), timeout)

    def subscribe(self, symbols: Iterable[str], callback: Callback, *, replay: bool = True) -> Subscription:
        """Watch symbols for updates. The returned Subscription unsubscribes when called."""
        return self.bus.subscribe(normalize_symbols(symbols), callback, replay=replay)

    async def get_market_status(self, exchange: str = "US") -> MarketStatus | None:
        """Exchange open/closed status, cached for ``status_ttl`` seconds."""
        cached = self._status.get(exchange)
        now = self._wall_clock()
        if cached is not None and cached.is_fresh(now, self.settings.status_ttl):
            return cached.data
        status = await self.fetcher.fetch_market_status(exchange)
        if status is None:
            return None
        self._status[exchange] = CacheEntry(data=status, fetched_at=self._wall_clock())
        return status

    # --- Streaming ---

    async def stream_subscribe(self, symbols: Iterable[str]) -> None:
        """Ask for live ticks. Ref-counted; the connection starts on first use."""
        wanted = normalize_symbols(symbols)
        if not wanted:
            return
        if self._source.streaming_enabled and not self._closed:
            self.streaming.start()
        await self.streaming.subscribe(wanted)

    async def stream_unsubscribe(self, symbols: Iterable[str]) -> None:
        await self.streaming.unsubscribe(normalize_symbols(symbols))

    def connection_state(self) -> ConnectionState:
        return self.streaming.state

    @property
    def stream_fatal(self) -> bool:
        """True once the stream was refused for good (close code 1008). It will not reconnect."""
        return self.streaming.fatal

    def stream_symbols(self) -> list[str]:
        """Symbols currently held by at least one stream subscriber."""
        return self.streaming.subscribed_symbols()

    def on_connection_state(self, callback: Callable[[ConnectionState], None]) -> Callable[[], None]:
        return self.streaming.on_state_change(callback)

    # --- Lifecycle ---

    async def join(self) -> None:
        """Wait for every queued fetch to be dispatched and settled."""
        await self.scheduler.join()

    async def shutdown(self) -> None:
        """Stop polling and streaming and release the source. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.scheduler.shutdown()
        await self.streaming.stop()
        self.bus.clear()
        await self._source.aclose()
        logger.info("Market store shut down")

    # --- Internal ---

    def _enqueue(self, symbol: str, kind: DataKind, priority: Priority) -> bool:
        if self._closed:
            return False
        if self.cache.is_fresh(symbol, kind) or self.ledger.is_claimed(symbol, kind):
            return False
        return self.scheduler.enqueue(symbol, kind, priority)

    async def _request(
        self,
        symbol: str,
        kind: DataKind,
        priority: Priority,
        timeout: float | None,
    ) -> Any:
        symbol = symbol.strip().upper()
        cached = self.cache.get(symbol, kind)
        if cached.fresh:
            return cached.data

        waiter: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_update(_: str, record: TickerRecord) -> None:
            data = record.quote if kind is DataKind.QUOTE else record.profile
            if data is not None and not waiter.done():
                waiter.set_result(data)

        wait = self.settings.request_wait_timeout if timeout is None else timeout
        sub = self.bus.subscribe([symbol], on_update, replay=False)
        try:
            self._enqueue(symbol, kind, priority)
            return await asyncio.wait_for(waiter, wait)
        except asyncio.TimeoutError:
            logger.info("No %s for %s within %.1fs", kind.value, symbol, wait)
            return None
        finally:
            sub.close()

    async def _dispatch(self, entry: QueueEntry) -> None:
        symbol, kind = entry.symbol, entry.kind
        if self.cache.is_fresh(symbol, kind):
            return
        if not self.ledger.try_claim(symbol, kind):
            return
        try:
            data = await self.fetcher.fetch(symbol, kind)
            if data is not None:
                self.cache.put(symbol, kind, data)
        finally:
            self.ledger.release(symbol, kind)

    def _on_missing_quote(self, symbol: str) -> None:
        self._enqueue(symbol, DataKind.QUOTE, Priority.HIGH)
