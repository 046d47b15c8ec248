"""Data models for market data."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Generic, NamedTuple, TypeVar
from urllib.parse import urlsplit, urlunsplit

from .errors import InvalidPayloadError

T = TypeVar("T")


class DataKind(str, Enum):
    QUOTE = "quote"
    PROFILE = "profile"


class Priority(str, Enum):
    """Request urgency. High drains before medium, medium before low."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    BACKOFF = "backoff"


def _number(payload: dict, key: str, default: float = 0.0) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def _optional_number(payload: dict, key: str) -> float | None:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


@dataclass(frozen=True, slots=True)
class Quote:
    """Immutable quote snapshot for one symbol."""

    symbol: str
    price: float
    change: float
    change_percent: float
    high: float
    low: float
    open: float
    previous_close: float
    timestamp: int  # Unix seconds
    volume: float | None = None

    @classmethod
    def from_payload(cls, symbol: str, payload: Any) -> Quote:
        """Parse the upstream quote body (short keys ``c d dp h l o pc t v``).

        Raises InvalidPayloadError when the current price is missing,
        non-numeric, non-finite or not positive.
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError(f"quote for {symbol} is not an object")
        price = payload.get("c")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise InvalidPayloadError(f"quote for {symbol} has non-numeric price {price!r}")
        if not math.isfinite(price) or price <= 0:
            raise InvalidPayloadError(f"quote for {symbol} has unusable price {price!r}")

        return cls(
            symbol=symbol,
            price=float(price),
            change=_number(payload, "d"),
            change_percent=_number(payload, "dp"),
            high=_number(payload, "h"),
            low=_number(payload, "l"),
            open=_number(payload, "o"),
            previous_close=_number(payload, "pc"),
            timestamp=int(_number(payload, "t")),
            volume=_optional_number(payload, "v"),
        )

    def with_tick(self, price: float, timestamp_ms: float | None = None) -> Quote:
        """Return a copy patched with a live trade price.

        Change and percent are always measured against the previous close
        from the last REST fetch, never against an earlier tick.
        """
        if self.previous_close > 0:
            change_percent = (price - self.previous_close) / self.previous_close * 100
        else:
            change_percent = 0.0
        timestamp = self.timestamp
        if timestamp_ms is not None and timestamp_ms > 0:
            timestamp = int(timestamp_ms // 1000)
        return replace(
            self,
            price=price,
            change=price - self.previous_close,
            change_percent=change_percent,
            timestamp=timestamp,
        )

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' relative to the previous close."""
        if self.change > 0:
            return "up"
        elif self.change < 0:
            return "down"
        return "flat"

    def to_dict(self) -> dict:
        """Serialize with the upstream short keys."""
        data = {
            "c": self.price,
            "d": round(self.change, 4),
            "dp": round(self.change_percent, 4),
            "h": self.high,
            "l": self.low,
            "o": self.open,
            "pc": self.previous_close,
            "t": self.timestamp,
        }
        if self.volume is not None:
            data["v"] = self.volume
        return data


def _https_url(raw: str) -> str:
    if not raw:
        return ""
    parts = urlsplit(raw if raw.startswith("http") else f"https://{raw}")
    if not parts.netloc:
        return ""
    return urlunsplit(("https", parts.netloc, parts.path or "/", parts.query, parts.fragment))


def _domain(url: str) -> str:
    host = urlsplit(url).netloc if url else ""
    return host[4:] if host.startswith("www.") else host


def resolve_logo(payload: dict) -> str:
    """Upstream logo URL if usable, else a clearbit logo for the website's domain."""
    logo = _https_url(_text(payload, "logo"))
    if logo:
        return logo
    domain = _domain(_https_url(_text(payload, "weburl"))) or _domain(
        _https_url(_text(payload, "website"))
    )
    return f"https://logo.clearbit.com/{domain}" if domain else ""


@dataclass(frozen=True, slots=True)
class Profile:
    """Company profile. Long-lived, rarely changes."""

    symbol: str
    name: str
    logo: str = ""
    website: str = ""
    exchange: str = ""
    industry: str = ""
    market_cap: float | None = None
    shares_outstanding: float | None = None
    currency: str = ""
    country: str = ""

    @classmethod
    def from_payload(cls, symbol: str, payload: Any) -> Profile:
        if not isinstance(payload, dict) or not payload:
            raise InvalidPayloadError(f"profile for {symbol} is empty")
        return cls(
            symbol=symbol,
            name=_text(payload, "name") or symbol,
            logo=resolve_logo(payload),
            website=_text(payload, "weburl") or _text(payload, "website"),
            exchange=_text(payload, "exchange"),
            industry=_text(payload, "finnhubIndustry") or _text(payload, "industry"),
            market_cap=_optional_number(payload, "marketCapitalization"),
            shares_outstanding=_optional_number(payload, "shareOutstanding"),
            currency=_text(payload, "currency"),
            country=_text(payload, "country"),
        )

    def to_dict(self) -> dict:
        return {
            "ticker": self.symbol,
            "name": self.name,
            "logo": self.logo,
            "weburl": self.website,
            "exchange": self.exchange,
            "industry": self.industry,
            "marketCapitalization": self.market_cap,
            "shareOutstanding": self.shares_outstanding,
            "currency": self.currency,
            "country": self.country,
        }


@dataclass(frozen=True, slots=True)
class MarketStatus:
    exchange: str
    is_open: bool
    session: str | None = None
    timestamp: int | None = None
    holiday: str | None = None
    timezone: str | None = None

    @classmethod
    def from_payload(cls, exchange: str, payload: Any) -> MarketStatus:
        if not isinstance(payload, dict) or not isinstance(payload.get("isOpen"), bool):
            raise InvalidPayloadError(f"market status for {exchange} lacks isOpen")
        t = _optional_number(payload, "t")
        return cls(
            exchange=_text(payload, "exchange") or exchange,
            is_open=payload["isOpen"],
            session=_text(payload, "session") or None,
            timestamp=int(t) if t is not None else None,
            holiday=_text(payload, "holiday") or None,
            timezone=_text(payload, "timezone") or None,
        )

    def to_dict(self) -> dict:
        return {
            "exchange": self.exchange,
            "isOpen": self.is_open,
            "session": self.session,
            "t": self.timestamp,
            "holiday": self.holiday,
            "timezone": self.timezone,
        }


@dataclass(frozen=True, slots=True)
class TickerRecord:
    """Join of the cached quote and profile for one symbol. Rebuilt on every update."""

    symbol: str
    quote: Quote | None = None
    profile: Profile | None = None

    @property
    def logo(self) -> str:
        return self.profile.logo if self.profile else ""

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "quote": self.quote.to_dict() if self.quote else None,
            "profile": self.profile.to_dict() if self.profile else None,
            "logo": self.logo,
        }


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    data: T
    fetched_at: float  # Unix seconds

    def is_fresh(self, now: float, ttl: float) -> bool:
        return now - self.fetched_at < ttl


class CacheLookup(NamedTuple):
    data: Any
    fresh: bool


@dataclass(frozen=True, slots=True)
class QueueEntry:
    symbol: str
    kind: DataKind
    priority: Priority
