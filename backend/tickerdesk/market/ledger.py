"""Tracks the one outstanding fetch per (symbol, kind)."""

from __future__ import annotations

from threading import Lock

from .models import DataKind


class InflightLedger:
    """Claim table so concurrent callers share a single network call.

    A caller that fails to claim waits for the running fetch's result on the
    notification bus instead of issuing its own request.
    """

    def __init__(self) -> None:
        self._claims: set[tuple[str, DataKind]] = set()
        self._lock = Lock()

    def try_claim(self, symbol: str, kind: DataKind) -> bool:
        """Reserve the slot. True exactly once until release()."""
        key = (symbol, DataKind(kind))
        with self._lock:
            if key in self._claims:
                return False
            self._claims.add(key)
            return True

    def release(self, symbol: str, kind: DataKind) -> None:
        """Free the slot whether the fetch succeeded or not."""
        with self._lock:
            self._claims.discard((symbol, DataKind(kind)))

    def is_claimed(self, symbol: str, kind: DataKind) -> bool:
        with self._lock:
            return (symbol, DataKind(kind)) in self._claims

    def __len__(self) -> int:
        with self._lock:
            return len(self._claims)
