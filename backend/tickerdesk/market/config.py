"""Runtime settings for the market data subsystem."""

from __future__ import annotations

import os
from dataclasses import dataclass

QUOTE_TTL = 10 * 60  # seconds
PROFILE_TTL = 24 * 60 * 60
STATUS_TTL = 5 * 60
PROFILE_STORE_KEY = "market_profiles_v1"

DEFAULT_PROXY_URL = "http://localhost:8000/api/finnhub"
DEFAULT_WS_URL = "wss://ws.finnhub.io"


@dataclass(frozen=True)
class MarketSettings:
    """Tunables for MarketStore. Defaults are tuned for a free-tier quota."""

    api_key: str = ""
    proxy_url: str = DEFAULT_PROXY_URL
    ws_url: str = DEFAULT_WS_URL

    quote_ttl: float = QUOTE_TTL
    profile_ttl: float = PROFILE_TTL
    status_ttl: float = STATUS_TTL

    # Scheduler: at most 2 requests in flight, one dispatch every 500ms
    max_concurrent: int = 2
    dispatch_interval: float = 0.5

    # REST retries: min(12s, 0.9s * 2^attempt), 4 attempts
    request_timeout: float = 8.0
    max_attempts: int = 4
    retry_base: float = 0.9
    retry_cap: float = 12.0
    retry_jitter: float = 0.1

    # Global pause after a 429, growing 1.5x per consecutive hit
    rate_limit_pause: float = 4.0
    rate_limit_growth: float = 1.5

    # Stream reconnects: min(15s, 1.2s * 2^attempt)
    reconnect_base: float = 1.2
    reconnect_cap: float = 15.0

    request_wait_timeout: float = 30.0

    profile_store_path: str | None = None
    profile_store_key: str = PROFILE_STORE_KEY

    @classmethod
    def from_env(cls) -> MarketSettings:
        """Build settings from environment variables, keeping defaults for unset ones."""
        return cls(
            api_key=os.environ.get("FINNHUB_API_KEY", "").strip(),
            proxy_url=os.environ.get("MARKET_PROXY_URL", "").strip() or DEFAULT_PROXY_URL,
            ws_url=os.environ.get("FINNHUB_WS_URL", "").strip() or DEFAULT_WS_URL,
            max_concurrent=_env_int("MARKET_MAX_CONCURRENT", cls.max_concurrent),
            dispatch_interval=_env_float("MARKET_DISPATCH_INTERVAL", cls.dispatch_interval),
            request_timeout=_env_float("MARKET_REQUEST_TIMEOUT", cls.request_timeout),
            profile_store_path=os.environ.get("MARKET_PROFILE_STORE", "").strip() or None,
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    value = int(raw)
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    value = float(raw)
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value
