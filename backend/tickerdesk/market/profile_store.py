"""Best-effort JSON file persistence for company profiles."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from .config import PROFILE_STORE_KEY, PROFILE_TTL
from .errors import InvalidPayloadError
from .models import CacheEntry, Profile

logger = logging.getLogger(__name__)


class ProfileStore:
    """Profiles survive restarts under one namespaced key of a JSON file.

    File layout::

        {"market_profiles_v1": {"AAPL": {"data": {...}, "logo": "...", "fetchedAt": 1707580800000}}}

    Keys other than ours are left untouched on write. Read and write
    failures are logged and ignored; the store is an optimisation only.
    """

    def __init__(
        self,
        path: str | Path,
        key: str = PROFILE_STORE_KEY,
        ttl: float = PROFILE_TTL,
    ) -> None:
        self.path = Path(path)
        self.key = key
        self.ttl = ttl

    def load(self, now: float) -> dict[str, CacheEntry[Profile]]:
        """Read saved profiles, dropping entries older than the TTL."""
        raw = self._read_document().get(self.key)
        if not isinstance(raw, dict):
            return {}

        loaded: dict[str, CacheEntry[Profile]] = {}
        for symbol, item in raw.items():
            try:
                fetched_at = float(item["fetchedAt"]) / 1000.0
                profile = Profile.from_payload(symbol, item["data"])
            except (KeyError, TypeError, ValueError, InvalidPayloadError) as e:
                logger.debug("Dropping saved profile %s: %s", symbol, e)
                continue
            if now - fetched_at >= self.ttl:
                continue
            if item.get("logo"):
                profile = replace(profile, logo=str(item["logo"]))
            loaded[symbol] = CacheEntry(data=profile, fetched_at=fetched_at)

        logger.info("Loaded %d saved profiles from %s", len(loaded), self.path)
        return loaded

    def save(self, entries: Mapping[str, CacheEntry[Profile]]) -> None:
        document = self._read_document()
        document[self.key] = {
            symbol: {
                "data": entry.data.to_dict(),
                "logo": entry.data.logo,
                "fetchedAt": int(entry.fetched_at * 1000),
            }
            for symbol, entry in entries.items()
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(document), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            logger.warning("Could not save profiles to %s: %s", self.path, e)

    def _read_document(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning("Could not read profile store %s: %s", self.path, e)
            return {}
        try:
            document = json.loads(text)
        except ValueError as e:
            logger.warning("Ignoring corrupt profile store %s: %s", self.path, e)
            return {}
        return document if isinstance(document, dict) else {}
