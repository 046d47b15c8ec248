"""REST fetcher with bounded retry and rate-limit backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote as urlquote

import httpx

from .backoff import Backoff, RateLimitGate
from .errors import FetchError, InvalidPayloadError, RateLimitedError, TransientFetchError
from .models import DataKind, MarketStatus, Profile, Quote

logger = logging.getLogger(__name__)


class Fetcher:
    """Performs the network calls behind the scheduler.

    Every public method resolves to parsed data or None. None means
    "temporarily unavailable"; nothing is raised for network errors,
    rate limiting, bad status codes or malformed bodies.

    Rate limiting (HTTP 429) trips the shared RateLimitGate so the scheduler
    pauses all dispatch, then retries like any other transient failure.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        gate: RateLimitGate,
        *,
        timeout: float = 8.0,
        max_attempts: int = 4,
        retry_base: float = 0.9,
        retry_cap: float = 12.0,
        retry_jitter: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._client = client
        self._gate = gate
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_base = retry_base
        self._retry_cap = retry_cap
        self._retry_jitter = retry_jitter
        self._sleep = sleep
        self._rng = rng
        self.requests = 0

    async def fetch(self, symbol: str, kind: DataKind) -> Quote | Profile | None:
        if DataKind(kind) is DataKind.QUOTE:
            return await self.fetch_quote(symbol)
        return await self.fetch_profile(symbol)

    async def fetch_quote(self, symbol: str) -> Quote | None:
        payload = await self.get_json(f"/quote/{urlquote(symbol, safe='')}")
        if payload is None:
            return None
        try:
            return Quote.from_payload(symbol, payload)
        except InvalidPayloadError as e:
            logger.warning("Discarding quote: %s", e)
            return None

    async def fetch_profile(self, symbol: str) -> Profile | None:
        payload = await self.get_json(f"/profile/{urlquote(symbol, safe='')}")
        if payload is None:
            return None
        try:
            return Profile.from_payload(symbol, payload)
        except InvalidPayloadError as e:
            logger.warning("Discarding profile: %s", e)
            return None

    async def fetch_market_status(self, exchange: str = "US") -> MarketStatus | None:
        payload = await self.get_json("/market-status", params={"exchange": exchange})
        if payload is None:
            return None
        try:
            return MarketStatus.from_payload(exchange, payload)
        except InvalidPayloadError as e:
            logger.warning("Discarding market status: %s", e)
            return None

    async def get_json(self, path: str, params: dict | None = None) -> Any:
        """GET ``path`` with retries. Returns the decoded body or None."""
        backoff = Backoff(
            base=self._retry_base,
            cap=self._retry_cap,
            jitter=self._retry_jitter,
            max_attempts=self._max_attempts,
            rng=self._rng,
        )
        while True:
            try:
                return await self._get_once(path, params)
            except TransientFetchError as e:
                delay = backoff.next_delay()
                if delay is None:
                    logger.warning("Giving up on %s after %d attempts: %s", path, backoff.attempt + 1, e)
                    return None
                logger.info("Retrying %s in %.2fs (attempt %d): %s", path, delay, backoff.attempt, e)
                await self._sleep(delay)
                backoff.retrying()
            except FetchError as e:
                logger.warning("Request for %s failed: %s", path, e)
                return None

    async def _get_once(self, path: str, params: dict | None) -> Any:
        self.requests += 1
        try:
            response = await self._client.get(path, params=params, timeout=self._timeout)
        except httpx.TransportError as e:
            raise TransientFetchError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429:
            self._gate.trip()
            raise RateLimitedError()
        self._gate.clear()
        if response.status_code >= 500:
            raise TransientFetchError(f"HTTP {response.status_code}", response.status_code)
        if not response.is_success:
            raise FetchError(f"HTTP {response.status_code}", response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"invalid JSON body: {e}", response.status_code) from e
