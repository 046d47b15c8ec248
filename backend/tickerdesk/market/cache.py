"""Thread-safe TTL cache for quotes and profiles."""

from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock

from .bus import NotificationBus
from .config import PROFILE_TTL, QUOTE_TTL
from .models import CacheEntry, CacheLookup, DataKind, Profile, Quote, TickerRecord
from .profile_store import ProfileStore


class MarketCache:
    """Last-known-good quotes and profiles, each with its own TTL.

    Writers: the fetcher (via the scheduler) and the streaming manager.
    Readers: MarketStore and anything it hands records to.

    Stale entries are kept and served with ``fresh=False`` until replaced.
    Every write publishes the rebuilt TickerRecord on the bus.
    """

    def __init__(
        self,
        bus: NotificationBus | None = None,
        *,
        quote_ttl: float = QUOTE_TTL,
        profile_ttl: float = PROFILE_TTL,
        clock: Callable[[], float] = time.time,
        profile_store: ProfileStore | None = None,
    ) -> None:
        self._bus = bus
        self._ttl = {DataKind.QUOTE: quote_ttl, DataKind.PROFILE: profile_ttl}
        self._clock = clock
        self._store = profile_store
        self._quotes: dict[str, CacheEntry[Quote]] = {}
        self._profiles: dict[str, CacheEntry[Profile]] = {}
        self._lock = Lock()
        if bus is not None:
            bus.bind(self.record)

    def load_profiles(self) -> int:
        """Hydrate profiles from the durable store. Returns how many were loaded."""
        if self._store is None:
            return 0
        loaded = self._store.load(self._clock())
        with self._lock:
            for symbol, entry in loaded.items():
                self._profiles.setdefault(symbol, entry)
        return len(loaded)

    def get(self, symbol: str, kind: DataKind) -> CacheLookup:
        """Cached data and whether it is still fresh. Never does I/O."""
        kind = DataKind(kind)
        with self._lock:
            entry = self._table(kind).get(symbol)
        if entry is None:
            return CacheLookup(None, False)
        return CacheLookup(entry.data, entry.is_fresh(self._clock(), self._ttl[kind]))

    def get_quote(self, symbol: str) -> CacheLookup:
        return self.get(symbol, DataKind.QUOTE)

    def get_profile(self, symbol: str) -> CacheLookup:
        return self.get(symbol, DataKind.PROFILE)

    def is_fresh(self, symbol: str, kind: DataKind) -> bool:
        return self.get(symbol, kind).fresh

    def put(self, symbol: str, kind: DataKind, data: Quote | Profile) -> TickerRecord:
        """Store ``data`` stamped with the current time and notify subscribers."""
        kind = DataKind(kind)
        entry = CacheEntry(data=data, fetched_at=self._clock())
        with self._lock:
            self._table(kind)[symbol] = entry
            snapshot = dict(self._profiles) if kind is DataKind.PROFILE else None
        if snapshot is not None and self._store is not None:
            self._store.save(snapshot)
        return self._publish(symbol)

    def patch_quote(self, symbol: str, price: float, timestamp_ms: float | None = None) -> Quote | None:
        """Apply a live trade to the cached quote.

        Returns None without touching anything if no quote is cached. The
        original fetch time is kept, so ticks never make a quote fresher.
        """
        with self._lock:
            entry = self._quotes.get(symbol)
            if entry is None:
                return None
            patched = entry.data.with_tick(price, timestamp_ms)
            self._quotes[symbol] = CacheEntry(data=patched, fetched_at=entry.fetched_at)
        self._publish(symbol)
        return patched

    def record(self, symbol: str) -> TickerRecord | None:
        """Join of whatever is cached for ``symbol``, or None if nothing is."""
        with self._lock:
            quote = self._quotes.get(symbol)
            profile = self._profiles.get(symbol)
        if quote is None and profile is None:
            return None
        return TickerRecord(
            symbol=symbol,
            quote=quote.data if quote else None,
            profile=profile.data if profile else None,
        )

    def symbols(self) -> list[str]:
        with self._lock:
            return sorted(self._quotes.keys() | self._profiles.keys())

    def clear(self) -> None:
        with self._lock:
            self._quotes.clear()
            self._profiles.clear()

    def _table(self, kind: DataKind) -> dict:
        return self._quotes if kind is DataKind.QUOTE else self._profiles

    def _publish(self, symbol: str) -> TickerRecord:
        record = self.record(symbol)
        if self._bus is not None and record is not None:
            self._bus.publish(symbol, record)
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._quotes.keys() | self._profiles.keys())

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._quotes or symbol in self._profiles
