"""Shared live-trade connection with ref-counted symbol subscriptions."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from collections.abc import Awaitable, Callable, Iterable
from threading import Lock
from typing import Any

from .backoff import Backoff
from .cache import MarketCache
from .errors import StreamClosed, StreamError
from .interface import StreamConnection
from .models import ConnectionState

logger = logging.getLogger(__name__)

POLICY_VIOLATION = 1008

StateCallback = Callable[[ConnectionState], None]


class StreamingManager:
    """Owns the single process-wide streaming connection.

    State machine:
        DISCONNECTED -> CONNECTING -> OPEN
        OPEN -> BACKOFF -> CONNECTING      on error, server error frame or close
        any -> DISCONNECTED (terminal)     on close code 1008 (policy violation)

    Symbols are ref-counted: the wire subscription exists while at least one
    consumer holds it, and every transition into OPEN re-sends all of them,
    so callers never resubscribe after a reconnect.

    Trade ticks patch the cached quote (see MarketCache.patch_quote). Ticks
    for a symbol with no cached quote are dropped; ``on_missing_quote`` is
    told once per symbol per connection so a REST fetch can be queued.
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[StreamConnection]],
        cache: MarketCache,
        *,
        reconnect_base: float = 1.2,
        reconnect_cap: float = 15.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_missing_quote: Callable[[str], None] | None = None,
    ) -> None:
        self._connect = connect
        self._cache = cache
        self._reconnect_base = reconnect_base
        self._reconnect_cap = reconnect_cap
        self._sleep = sleep
        self._on_missing_quote = on_missing_quote

        self._refs: dict[str, int] = {}
        self._lock = Lock()
        self._conn: StreamConnection | None = None
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._missing_reported: set[str] = set()
        self._listeners: list[StateCallback] = []

        self.state = ConnectionState.DISCONNECTED
        self.fatal = False
        self.last_error: str | None = None
        self.connect_count = 0
        self.ticks_applied = 0

    # --- Public API ---

    def start(self) -> None:
        """Begin connecting in the background. No-op if running or terminally closed."""
        if self.fatal or (self._task is not None and not self._task.done()):
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="market-stream")
        logger.info("Streaming manager started")

    async def stop(self) -> None:
        """Close the connection and stop reconnecting. Safe to call multiple times."""
        self._stopped = True
        task, self._task = self._task, None
        conn = self._conn
        if conn is not None:
            await conn.close()
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._conn = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def subscribe(self, symbols: Iterable[str]) -> None:
        """Take one reference per symbol; the first reference subscribes on the wire."""
        first: list[str] = []
        with self._lock:
            for symbol in symbols:
                count = self._refs.get(symbol, 0)
                self._refs[symbol] = count + 1
                if count == 0:
                    first.append(symbol)
        await self._send_all("subscribe", first)

    async def unsubscribe(self, symbols: Iterable[str]) -> None:
        """Drop one reference per symbol; the last one unsubscribes on the wire."""
        last: list[str] = []
        with self._lock:
            for symbol in symbols:
                count = self._refs.get(symbol, 0)
                if count == 0:
                    continue
                if count == 1:
                    del self._refs[symbol]
                    last.append(symbol)
                else:
                    self._refs[symbol] = count - 1
        await self._send_all("unsubscribe", last)

    def ref_count(self, symbol: str) -> int:
        with self._lock:
            return self._refs.get(symbol, 0)

    def subscribed_symbols(self) -> list[str]:
        with self._lock:
            return list(self._refs)

    def on_state_change(self, callback: StateCallback) -> Callable[[], None]:
        """Register for state transitions. Returns a disposer."""
        self._listeners.append(callback)

        def dispose() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return dispose

    def handle_message(self, raw: str | bytes) -> int:
        """Apply one server frame. Returns the number of ticks applied.

        Raises StreamError for a server ``error`` frame.
        """
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("Skipping unparsable stream frame: %r", raw[:200])
            return 0
        if not isinstance(msg, dict):
            return 0

        kind = msg.get("type")
        if kind == "error":
            raise StreamError(f"server error frame: {msg.get('msg', msg)}")
        if kind != "trade" or not isinstance(msg.get("data"), list):
            return 0

        applied = 0
        for trade in msg["data"]:
            if isinstance(trade, dict) and self._apply_trade(trade):
                applied += 1
        return applied

    # --- Internal ---

    def _apply_trade(self, trade: dict) -> bool:
        symbol = trade.get("s")
        if not isinstance(symbol, str) or self.ref_count(symbol) == 0:
            return False
        price = trade.get("p")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            return False
        if not math.isfinite(price) or price <= 0:
            return False
        ts = trade.get("t")
        timestamp_ms = ts if isinstance(ts, (int, float)) and not isinstance(ts, bool) else None

        if self._cache.patch_quote(symbol, float(price), timestamp_ms) is None:
            if symbol not in self._missing_reported:
                self._missing_reported.add(symbol)
                logger.debug("Dropping tick for %s: no cached quote yet", symbol)
                if self._on_missing_quote is not None:
                    self._on_missing_quote(symbol)
            return False
        self.ticks_applied += 1
        return True

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.debug("Stream state -> %s", state.value)
        for callback in list(self._listeners):
            try:
                callback(state)
            except Exception:
                logger.exception("Stream state listener failed")

    async def _send_all(self, action: str, symbols: list[str]) -> None:
        conn = self._conn
        if not symbols or conn is None or self.state is not ConnectionState.OPEN:
            return
        for symbol in symbols:
            if not await self._send(conn, {"type": action, "symbol": symbol}):
                return

    async def _send(self, conn: StreamConnection, message: dict) -> bool:
        try:
            await conn.send(json.dumps(message))
        except (OSError, StreamError) as e:
            # Closing makes recv() fail, which drives the reconnect path
            self.last_error = f"send failed: {e}"
            logger.warning("Stream send failed, reconnecting: %s", e)
            await conn.close()
            return False
        logger.debug("Stream %s %s", message["type"], message["symbol"])
        return True

    async def _run(self) -> None:
        backoff = Backoff(
            base=self._reconnect_base,
            cap=self._reconnect_cap,
            jitter=0.0,
            max_attempts=None,
        )
        try:
            while not self._stopped:
                self._set_state(ConnectionState.CONNECTING)
                try:
                    conn = await self._connect()
                except (OSError, StreamError) as e:
                    self.last_error = str(e)
                    logger.warning("Stream connect failed: %s", e)
                else:
                    backoff.reset()
                    closed = await self._session(conn)
                    if closed.code == POLICY_VIOLATION:
                        self.fatal = True
                        self.last_error = str(closed)
                        logger.error("Stream closed for policy violation, not reconnecting: %s", closed)
                        return
                if self._stopped:
                    return

                delay = backoff.next_delay()
                self._set_state(ConnectionState.BACKOFF)
                logger.info("Stream reconnecting in %.1fs", delay)
                await self._sleep(delay)
                backoff.retrying()
        finally:
            self._conn = None
            self._set_state(ConnectionState.DISCONNECTED)

    async def _session(self, conn: StreamConnection) -> StreamClosed:
        """Serve one connection until it closes. Returns the close that ended it."""
        self._conn = conn
        self.connect_count += 1
        self._missing_reported.clear()
        self._set_state(ConnectionState.OPEN)
        logger.info("Stream open (connection #%d)", self.connect_count)
        try:
            await self._send_all("subscribe", self.subscribed_symbols())
            while True:
                raw = await conn.recv()
                try:
                    self.handle_message(raw)
                except StreamError as e:
                    self.last_error = str(e)
                    logger.warning("Stream error frame, dropping connection: %s", e)
                    await conn.close()
        except StreamClosed as e:
            if e.code != POLICY_VIOLATION:
                self.last_error = str(e)
                logger.warning("Stream lost: %s", e)
            return e
        except Exception as e:
            # anything else on a live connection is treated as an abnormal drop
            logger.exception("Stream session failed")
            self.last_error = f"session failed: {e}"
            await conn.close()
            return StreamClosed(1006, str(e))
        finally:
            self._conn = None
