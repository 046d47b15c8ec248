"""Test doubles for the market subsystem.

Nothing here touches the network or sleeps for real: REST goes through
httpx.MockTransport, streams through FakeConnection, and time through
FakeClock/FakeSleep.
"""

import asyncio
import json

import httpx

from tickerdesk.market.errors import StreamClosed, StreamError


class FakeClock:
    """Manually advanced clock usable as both wall and monotonic time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays, advances the clock, and yields once to the loop."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)

    @property
    def total(self) -> float:
        return sum(self.delays)


class FakeConnection:
    """In-memory StreamConnection. Tests push frames in and read ``sent`` out."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed or self.fail_sends:
            raise StreamClosed(1006, "send on dead socket")
        self.sent.append(json.loads(message))

    async def recv(self) -> str:
        item = await self._inbox.get()
        if isinstance(item, StreamClosed):
            self.closed = True
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(StreamClosed(1000, "closed by client"))

    def push(self, payload) -> None:
        self._inbox.put_nowait(payload if isinstance(payload, (str, bytes)) else json.dumps(payload))

    def drop(self, code: int = 1006, reason: str = "") -> None:
        self._inbox.put_nowait(StreamClosed(code, reason))

    def fail(self, error: Exception) -> None:
        """Make the next recv() raise ``error`` instead of a close."""
        self._inbox.put_nowait(error)

    def wire(self) -> list[tuple[str, str]]:
        return [(m["type"], m["symbol"]) for m in self.sent]


class FakeConnector:
    """connect() stand-in that hands out a fresh FakeConnection per call."""

    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.refusals = 0

    async def __call__(self) -> FakeConnection:
        if self.refusals:
            self.refusals -= 1
            raise StreamError("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]


class RecordingHandler:
    """httpx.MockTransport handler: per-path canned responses plus a call log.

    ``routes`` maps a URL path to either a Response, a list of Responses
    consumed in order (the last one repeats), or an exception to raise.
    """

    def __init__(self, routes: dict | None = None) -> None:
        self.routes = dict(routes or {})
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        return route

    def count(self, path: str) -> int:
        return self.calls.count(path)


def quote_body(price: float = 100.0, previous_close: float = 95.0, **extra) -> dict:
    body = {
        "c": price,
        "d": price - previous_close,
        "dp": (price - previous_close) / previous_close * 100,
        "h": price + 1,
        "l": previous_close - 1,
        "o": previous_close,
        "pc": previous_close,
        "t": 1707580800,
    }
    body.update(extra)
    return body


def profile_body(name: str = "Apple Inc", **extra) -> dict:
    body = {
        "name": name,
        "ticker": "AAPL",
        "logo": "https://static2.finnhub.io/file/publicdatany/finnhubimage/stock_logo/AAPL.png",
        "weburl": "https://www.apple.com/",
        "exchange": "NASDAQ NMS - GLOBAL MARKET",
        "finnhubIndustry": "Technology",
        "marketCapitalization": 2950000.0,
        "shareOutstanding": 15441.88,
        "currency": "USD",
        "country": "US",
    }
    body.update(extra)
    return body


async def settle(predicate, rounds: int = 500) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


