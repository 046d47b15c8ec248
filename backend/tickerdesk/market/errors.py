"""Exceptions raised inside the market data subsystem.

None of these cross the MarketStore boundary for expected failure modes;
the store turns them into "no data yet" or an observable connection state.
"""

from __future__ import annotations


class MarketDataError(Exception):
    """Base class for market data failures."""


class FetchError(MarketDataError):
    """A REST request failed and should not be retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Network failure, timeout or 5xx. Worth retrying."""


class RateLimitedError(TransientFetchError):
    """Upstream answered HTTP 429."""

    def __init__(self, message: str = "RATE_LIMITED") -> None:
        super().__init__(message, status_code=429)


class InvalidPayloadError(MarketDataError):
    """Response body was not a usable quote/profile/status."""


class StreamError(MarketDataError):
    """Streaming connection could not be established or used."""


class StreamClosed(StreamError):
    """Streaming connection closed. ``code`` follows websocket close codes."""

    def __init__(self, code: int = 1006, reason: str = "") -> None:
        super().__init__(f"stream closed: code={code} reason={reason or '-'}")
        self.code = code
        self.reason = reason
