"""Retry backoff and the process-wide rate-limit cooldown."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)


class BackoffState(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    RETRYING = "retrying"


class Backoff:
    """Exponential backoff as an explicit state machine.

    IDLE -> WAITING(attempt) -> RETRYING -> WAITING(attempt + 1) ... until the
    attempt ceiling is hit, at which point next_delay() returns None.

    Delay for attempt n: min(cap, base * factor**n * (1 + jitter * rng())).
    Jitter must stay below ``factor - 1`` so delays never decrease.
    """

    def __init__(
        self,
        base: float = 0.9,
        factor: float = 2.0,
        cap: float = 12.0,
        jitter: float = 0.1,
        max_attempts: int | None = 4,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if factor < 1:
            raise ValueError("factor must be >= 1")
        if jitter < 0 or (jitter and jitter >= factor - 1):
            raise ValueError("jitter must be in [0, factor - 1)")
        self.base = base
        self.factor = factor
        self.cap = cap
        self.jitter = jitter
        self.max_attempts = max_attempts
        self._rng = rng
        self.attempt = 0
        self.state = BackoffState.IDLE

    @property
    def exhausted(self) -> bool:
        # attempt counts failures so far; the try that just failed was number attempt+1
        return self.max_attempts is not None and self.attempt + 1 >= self.max_attempts

    def next_delay(self) -> float | None:
        """Seconds to wait before the next try, or None when out of attempts."""
        if self.exhausted:
            return None
        raw = self.base * self.factor**self.attempt
        if self.jitter:
            raw *= 1 + self.jitter * self._rng()
        self.attempt += 1
        self.state = BackoffState.WAITING
        return min(self.cap, raw)

    def retrying(self) -> None:
        self.state = BackoffState.RETRYING

    def reset(self) -> None:
        self.attempt = 0
        self.state = BackoffState.IDLE


class RateLimitGate:
    """Global cooldown shared by the fetcher and the scheduler.

    Every consecutive 429 pushes ``until`` out by pause * growth**(hits - 1);
    the scheduler dispatches nothing while the gate is cooling.
    """

    def __init__(
        self,
        pause: float = 4.0,
        growth: float = 1.5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pause = pause
        self.growth = growth
        self._clock = clock
        self.until = 0.0
        self.hits = 0

    def trip(self) -> float:
        """Record a rate-limit response. Returns the new cooldown deadline."""
        self.hits += 1
        duration = self.pause * self.growth ** (self.hits - 1)
        self.until = max(self.until, self._clock() + duration)
        logger.warning("Rate limited (%d in a row): pausing all requests for %.1fs", self.hits, duration)
        return self.until

    def clear(self) -> None:
        """A non-429 response ends the consecutive streak."""
        self.hits = 0

    def remaining(self) -> float:
        return max(0.0, self.until - self._clock())

    @property
    def cooling(self) -> bool:
        return self.remaining() > 0
