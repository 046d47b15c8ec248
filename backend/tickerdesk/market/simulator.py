"""Offline market simulator: GBM prices served over the same REST and stream shapes."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time

import httpx
import numpy as np

from .errors import StreamClosed
from .interface import MarketDataSource, StreamConnection
from .seed_prices import DEFAULT_MU, DEFAULT_SIGMA, SEED_PRICES, SEED_PROFILES, TICKER_SIGMA

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Geometric Brownian Motion price paths for a growing set of tickers.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Each ticker opens at its seed price (its previous close) and tracks the
    session open/high/low and a synthetic volume so quote bodies look real.
    """

    # 500ms as a fraction of a trading year (252 days * 6.5h)
    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600
    DEFAULT_DT = 0.5 / TRADING_SECONDS_PER_YEAR

    def __init__(self, tickers: list[str], dt: float = DEFAULT_DT, seed: int | None = None) -> None:
        self._dt = dt
        self._rng = np.random.default_rng(seed)
        self._index: dict[str, int] = {}
        self._prev_close = np.empty(0)
        self._price = np.empty(0)
        self._high = np.empty(0)
        self._low = np.empty(0)
        self._sigma = np.empty(0)
        self._volume = np.empty(0)
        for ticker in tickers:
            self.add_ticker(ticker)

    @property
    def tickers(self) -> list[str]:
        return list(self._index)

    def add_ticker(self, ticker: str) -> None:
        if ticker in self._index:
            return
        seed = SEED_PRICES.get(ticker) or float(self._rng.uniform(50.0, 300.0))
        self._index[ticker] = len(self._index)
        self._prev_close = np.append(self._prev_close, seed)
        self._price = np.append(self._price, seed)
        self._high = np.append(self._high, seed)
        self._low = np.append(self._low, seed)
        self._sigma = np.append(self._sigma, TICKER_SIGMA.get(ticker, DEFAULT_SIGMA))
        self._volume = np.append(self._volume, 0.0)

    def step(self) -> dict[str, float]:
        """Advance every ticker one time step. Returns {ticker: new_price}."""
        if not self._index:
            return {}
        z = self._rng.standard_normal(len(self._index))
        drift = (DEFAULT_MU - 0.5 * self._sigma**2) * self._dt
        diffusion = self._sigma * math.sqrt(self._dt) * z
        self._price = self._price * np.exp(drift + diffusion)
        self._high = np.maximum(self._high, self._price)
        self._low = np.minimum(self._low, self._price)
        self._volume = self._volume + self._rng.integers(100, 5_000, len(self._index))
        return {t: round(float(self._price[i]), 2) for t, i in self._index.items()}

    def get_price(self, ticker: str) -> float | None:
        i = self._index.get(ticker)
        return None if i is None else round(float(self._price[i]), 2)

    def quote_payload(self, ticker: str) -> dict:
        self.add_ticker(ticker)
        i = self._index[ticker]
        price = float(self._price[i])
        prev = float(self._prev_close[i])
        return {
            "c": round(price, 2),
            "d": round(price - prev, 2),
            "dp": round((price - prev) / prev * 100, 4),
            "h": round(float(self._high[i]), 2),
            "l": round(float(self._low[i]), 2),
            "o": round(prev, 2),
            "pc": round(prev, 2),
            "t": int(time.time()),
            "v": float(self._volume[i]),
        }


def profile_payload(ticker: str) -> dict:
    """Upstream-shaped profile body; {} for tickers we know nothing about."""
    seed = SEED_PROFILES.get(ticker)
    if seed is None:
        return {}
    name, weburl, exchange, industry, market_cap = seed
    return {
        "name": name,
        "ticker": ticker,
        "logo": "",
        "weburl": weburl,
        "exchange": exchange,
        "finnhubIndustry": industry,
        "marketCapitalization": market_cap,
        "currency": "USD",
        "country": "US",
    }


class SimulatedStream:
    """StreamConnection that emits trade frames for subscribed symbols."""

    def __init__(self, sim: GBMSimulator, interval: float) -> None:
        self._sim = sim
        self._interval = interval
        self._symbols: set[str] = set()
        self._closed = asyncio.Event()

    async def send(self, message: str) -> None:
        if self._closed.is_set():
            raise StreamClosed(1000, "closed")
        msg = json.loads(message)
        symbol = msg.get("symbol")
        if msg.get("type") == "subscribe":
            self._sim.add_ticker(symbol)
            self._symbols.add(symbol)
        elif msg.get("type") == "unsubscribe":
            self._symbols.discard(symbol)

    async def recv(self) -> str:
        while True:
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            else:
                raise StreamClosed(1000, "closed")
            if not self._symbols:
                continue
            prices = self._sim.step()
            now_ms = int(time.time() * 1000)
            data = [{"s": s, "p": prices[s], "t": now_ms, "v": 100} for s in sorted(self._symbols)]
            return json.dumps({"type": "trade", "data": data})

    async def close(self) -> None:
        self._closed.set()


class SimulatorDataSource(MarketDataSource):
    """MarketDataSource backed by the GBM simulator.

    REST requests never leave the process: an httpx.MockTransport answers
    ``/quote``, ``/profile`` and ``/market-status`` from simulator state.
    """

    def __init__(self, update_interval: float = 0.5, seed: int | None = None) -> None:
        self._interval = update_interval
        self._sim = GBMSimulator(list(SEED_PRICES), seed=seed)
        self._client: httpx.AsyncClient | None = None

    @property
    def simulator(self) -> GBMSimulator:
        return self._sim

    @property
    def streaming_enabled(self) -> bool:
        return True

    def http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=httpx.MockTransport(self._handle),
                base_url="http://simulator",
            )
        return self._client

    async def connect_stream(self) -> StreamConnection:
        logger.info("Simulated stream connected")
        return SimulatedStream(self._sim, self._interval)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _handle(self, request: httpx.Request) -> httpx.Response:
        parts = [p for p in request.url.path.split("/") if p]
        if len(parts) == 2 and parts[0] == "quote":
            return httpx.Response(200, json=self._sim.quote_payload(parts[1].upper()))
        if len(parts) == 2 and parts[0] == "profile":
            return httpx.Response(200, json=profile_payload(parts[1].upper()))
        if parts == ["market-status"]:
            exchange = request.url.params.get("exchange", "US")
            return httpx.Response(
                200,
                json={
                    "exchange": exchange,
                    "isOpen": True,
                    "session": "regular",
                    "t": int(time.time()),
                    "holiday": None,
                    "timezone": "America/New_York",
                },
            )
        return httpx.Response(404, json={"error": "not found"})
