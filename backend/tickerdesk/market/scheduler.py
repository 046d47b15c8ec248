"""Priority work queue with a single paced consumer loop."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from .backoff import RateLimitGate
from .models import DataKind, Priority, QueueEntry

logger = logging.getLogger(__name__)

Dispatch = Callable[[QueueEntry], Awaitable[None]]


class PriorityScheduler:
    """Turns a backlog of wanted fetches into network calls at a safe pace.

    Three independent limits apply to the consumer loop:
      - a hard cap on dispatches in flight (``max_concurrent``)
      - a fixed gap between consecutive dispatches (``dispatch_interval``)
      - the global rate-limit cooldown, during which nothing starts

    Selection is by tier (high, medium, low) and FIFO inside a tier. Work
    that has already been dispatched is never pre-empted.
    """

    def __init__(
        self,
        dispatch: Dispatch,
        gate: RateLimitGate,
        *,
        max_concurrent: int = 2,
        dispatch_interval: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._dispatch = dispatch
        self._gate = gate
        self._max_concurrent = max_concurrent
        self._interval = dispatch_interval
        self._sleep = sleep
        self._tiers: dict[Priority, deque[QueueEntry]] = {p: deque() for p in Priority}
        self._queued: set[tuple[str, DataKind]] = set()
        self._slots = asyncio.Semaphore(max_concurrent)
        self._loop_task: asyncio.Task | None = None
        self._dispatched: set[asyncio.Task] = set()
        self.dispatch_count = 0

    # --- Public API ---

    def enqueue(self, symbol: str, kind: DataKind, priority: Priority | str) -> bool:
        """Queue a fetch. Returns False if (symbol, kind) is already queued.

        The first priority wins; re-enqueueing never changes it.
        Raises ValueError for an unknown priority.
        """
        priority = Priority(priority)
        kind = DataKind(kind)
        key = (symbol, kind)
        if key in self._queued:
            return False
        self._queued.add(key)
        self._tiers[priority].append(QueueEntry(symbol=symbol, kind=kind, priority=priority))
        self._ensure_running()
        return True

    def is_queued(self, symbol: str, kind: DataKind) -> bool:
        return (symbol, DataKind(kind)) in self._queued

    @property
    def pending(self) -> int:
        return len(self._queued)

    @property
    def active(self) -> int:
        return len(self._dispatched)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def join(self) -> None:
        """Wait until the queue is empty and every dispatch has settled."""
        while self.running or self._dispatched:
            waiting = set(self._dispatched)
            if self._loop_task is not None and not self._loop_task.done():
                waiting.add(self._loop_task)
            await asyncio.wait(waiting)

    async def shutdown(self) -> None:
        """Drop queued work and cancel the loop and in-flight dispatches."""
        for tier in self._tiers.values():
            tier.clear()
        self._queued.clear()
        tasks = list(self._dispatched)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._dispatched.clear()
        # tasks cancelled before their first step never released their slot
        self._slots = asyncio.Semaphore(self._max_concurrent)
        logger.info("Scheduler stopped")

    # --- Internal ---

    def _ensure_running(self) -> None:
        if self.running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run(), name="market-scheduler")

    def _pop_next(self) -> QueueEntry | None:
        for priority in Priority:
            tier = self._tiers[priority]
            if tier:
                entry = tier.popleft()
                self._queued.discard((entry.symbol, entry.kind))
                return entry
        return None

    async def _run(self) -> None:
        """Single consumer. Exits when the queue is empty; enqueue() restarts it."""
        while self._queued:
            cooldown = self._gate.remaining()
            if cooldown > 0:
                logger.info("Scheduler paused %.1fs for rate-limit cooldown", cooldown)
                await self._sleep(cooldown)
                continue

            await self._slots.acquire()
            if self._gate.cooling:
                # a 429 landed while we waited for the slot
                self._slots.release()
                continue

            entry = self._pop_next()
            if entry is None:
                self._slots.release()
                break

            task = asyncio.create_task(self._run_one(entry), name=f"fetch-{entry.kind.value}-{entry.symbol}")
            self._dispatched.add(task)
            task.add_done_callback(self._dispatched.discard)
            self.dispatch_count += 1
            logger.debug("Dispatched %s %s (%s)", entry.kind.value, entry.symbol, entry.priority.value)

            await self._sleep(self._interval)

    async def _run_one(self, entry: QueueEntry) -> None:
        try:
            await self._dispatch(entry)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Dispatch failed for %s %s", entry.kind.value, entry.symbol)
        finally:
            self._slots.release()
