"""Per-symbol publish/subscribe for ticker updates."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from threading import Lock

from .models import TickerRecord

logger = logging.getLogger(__name__)

Callback = Callable[[str, TickerRecord], None]
RecordLookup = Callable[[str], "TickerRecord | None"]


class Subscription:
    """Handle returned by NotificationBus.subscribe(). Calling it unsubscribes."""

    __slots__ = ("_bus", "symbols", "callback", "active")

    def __init__(self, bus: NotificationBus, symbols: tuple[str, ...], callback: Callback) -> None:
        self._bus = bus
        self.symbols = symbols
        self.callback = callback
        self.active = True

    def close(self) -> None:
        """Remove this callback from every symbol. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)

    __call__ = close

    def _deliver(self, symbol: str, record: TickerRecord) -> None:
        if not self.active:
            return
        try:
            self.callback(symbol, record)
        except Exception:
            logger.exception("Subscriber callback failed for %s", symbol)


class NotificationBus:
    """Fans every cache write out to the subscribers watching that symbol.

    ``lookup`` returns the current record for a symbol; it is used to give new
    subscribers whatever is already cached.
    """

    def __init__(self, lookup: RecordLookup | None = None) -> None:
        self._lookup = lookup
        self._subs: dict[str, dict[Subscription, None]] = {}
        self._lock = Lock()

    def bind(self, lookup: RecordLookup) -> None:
        self._lookup = lookup

    def subscribe(
        self,
        symbols: Iterable[str],
        callback: Callback,
        *,
        replay: bool = True,
    ) -> Subscription:
        """Register ``callback(symbol, record)`` for each symbol.

        With ``replay``, symbols that already have cached data get one
        delivery on the next loop iteration, never from inside this call.
        Must be called from the event loop thread when ``replay`` is set.
        """
        wanted = tuple(dict.fromkeys(symbols))
        sub = Subscription(self, wanted, callback)
        with self._lock:
            for symbol in wanted:
                self._subs.setdefault(symbol, {})[sub] = None

        if replay and self._lookup is not None:
            loop = asyncio.get_running_loop()
            for symbol in wanted:
                record = self._lookup(symbol)
                if record is not None:
                    loop.call_soon(sub._deliver, symbol, record)
        return sub

    def publish(self, symbol: str, record: TickerRecord) -> int:
        """Deliver synchronously to current subscribers. Returns how many were called."""
        with self._lock:
            targets = tuple(self._subs.get(symbol, ()))
        for sub in targets:
            sub._deliver(symbol, record)
        return len(targets)

    def subscriber_count(self, symbol: str) -> int:
        with self._lock:
            return len(self._subs.get(symbol, ()))

    def clear(self) -> None:
        with self._lock:
            subs = {sub for bucket in self._subs.values() for sub in bucket}
            self._subs.clear()
        for sub in subs:
            sub.active = False

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            for symbol in sub.symbols:
                bucket = self._subs.get(symbol)
                if bucket is None:
                    continue
                bucket.pop(sub, None)
                if not bucket:
                    del self._subs[symbol]
