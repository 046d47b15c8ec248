"""Tests for the priority scheduler."""

import asyncio

import pytest
from fakes import FakeClock, FakeSleep, settle

from tickerdesk.market.backoff import RateLimitGate
from tickerdesk.market.models import DataKind, Priority
from tickerdesk.market.scheduler import PriorityScheduler


class Recorder:
    """Dispatch stand-in that logs entries and tracks peak concurrency."""

    def __init__(self, clock: FakeClock | None = None, hold: asyncio.Event | None = None):
        self.clock = clock
        self.hold = hold
        self.order: list[tuple[str, DataKind]] = []
        self.times: list[float] = []
        self.running = 0
        self.peak = 0

    async def __call__(self, entry):
        self.order.append((entry.symbol, entry.kind))
        if self.clock is not None:
            self.times.append(self.clock())
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            if self.hold is not None:
                await self.hold.wait()
            else:
                await asyncio.sleep(0)
        finally:
            self.running -= 1


@pytest.mark.asyncio
class TestPriorityScheduler:
    """Unit tests for PriorityScheduler."""

    async def test_priority_then_fifo(self, clock, fake_sleep):
        recorder = Recorder()
        scheduler = PriorityScheduler(recorder, RateLimitGate(clock=clock), max_concurrent=1, sleep=fake_sleep)

        scheduler.enqueue("A", DataKind.QUOTE, Priority.LOW)
        scheduler.enqueue("B", DataKind.QUOTE, Priority.HIGH)
        scheduler.enqueue("C", DataKind.QUOTE, Priority.MEDIUM)
        scheduler.enqueue("D", DataKind.QUOTE, Priority.HIGH)
        await scheduler.join()

        assert [symbol for symbol, _ in recorder.order] == ["B", "D", "C", "A"]

    async def test_enqueue_is_idempotent(self, clock, fake_sleep):
        recorder = Recorder()
        scheduler = PriorityScheduler(recorder, RateLimitGate(clock=clock), sleep=fake_sleep)

        assert scheduler.enqueue("AAPL", DataKind.QUOTE, Priority.LOW)
        assert not scheduler.enqueue("AAPL", DataKind.QUOTE, Priority.HIGH)
        assert scheduler.enqueue("AAPL", DataKind.PROFILE, Priority.LOW)
        assert scheduler.pending == 2
        assert scheduler.is_queued("AAPL", DataKind.QUOTE)

        await scheduler.join()
        assert sorted(recorder.order) == [("AAPL", DataKind.PROFILE), ("AAPL", DataKind.QUOTE)]
        assert scheduler.pending == 0

    async def test_unknown_priority_rejected(self, clock, fake_sleep):
        scheduler = PriorityScheduler(Recorder(), RateLimitGate(clock=clock), sleep=fake_sleep)
        with pytest.raises(ValueError):
            scheduler.enqueue("AAPL", DataKind.QUOTE, "urgent")
        assert scheduler.pending == 0
        assert not scheduler.running

    async def test_concurrency_cap(self, clock, fake_sleep):
        hold = asyncio.Event()
        recorder = Recorder(hold=hold)
        scheduler = PriorityScheduler(
            recorder, RateLimitGate(clock=clock), max_concurrent=2, dispatch_interval=0, sleep=fake_sleep
        )
        for symbol in "ABCDE":
            scheduler.enqueue(symbol, DataKind.QUOTE, Priority.MEDIUM)

        await settle(lambda: scheduler.active == 2)
        for _ in range(20):
            await asyncio.sleep(0)
        assert recorder.running == 2
        assert scheduler.pending == 3

        hold.set()
        await scheduler.join()
        assert len(recorder.order) == 5
        assert recorder.peak == 2

    async def test_pacing_over_a_large_backlog(self):
        """24 symbols x 2 kinds at two-wide, 0.5s apart takes at least 12s."""
        clock = FakeClock()
        sleep = FakeSleep(clock)
        recorder = Recorder(clock=clock)
        scheduler = PriorityScheduler(
            recorder, RateLimitGate(clock=clock), max_concurrent=2, dispatch_interval=0.5, sleep=sleep
        )
        start = clock()
        for i in range(24):
            for kind in DataKind:
                scheduler.enqueue(f"SYM{i:02d}", kind, Priority.LOW)
        await scheduler.join()

        assert len(recorder.order) == 48
        assert recorder.peak <= 2
        assert clock() - start >= 12.0
        gaps = [b - a for a, b in zip(recorder.times, recorder.times[1:])]
        assert min(gaps) >= 0.5

    async def test_cooldown_blocks_dispatch(self):
        clock = FakeClock()
        sleep = FakeSleep(clock)
        gate = RateLimitGate(pause=4.0, clock=clock)
        recorder = Recorder(clock=clock)
        scheduler = PriorityScheduler(recorder, gate, sleep=sleep)

        deadline = gate.trip()
        scheduler.enqueue("AAPL", DataKind.QUOTE, Priority.HIGH)
        await scheduler.join()

        assert sleep.delays[0] == pytest.approx(4.0)
        assert recorder.times[0] >= deadline

    async def test_failed_dispatch_frees_its_slot(self, clock, fake_sleep, caplog):
        done = []

        async def dispatch(entry):
            if entry.symbol == "BAD":
                raise RuntimeError("boom")
            done.append(entry.symbol)

        scheduler = PriorityScheduler(dispatch, RateLimitGate(clock=clock), max_concurrent=1, sleep=fake_sleep)
        scheduler.enqueue("BAD", DataKind.QUOTE, Priority.HIGH)
        scheduler.enqueue("GOOD", DataKind.QUOTE, Priority.LOW)
        await scheduler.join()

        assert done == ["GOOD"]
        assert "Dispatch failed for quote BAD" in caplog.text

    async def test_restarts_after_draining(self, clock, fake_sleep):
        recorder = Recorder()
        scheduler = PriorityScheduler(recorder, RateLimitGate(clock=clock), sleep=fake_sleep)

        scheduler.enqueue("A", DataKind.QUOTE, Priority.LOW)
        await scheduler.join()
        assert not scheduler.running

        scheduler.enqueue("B", DataKind.QUOTE, Priority.LOW)
        await scheduler.join()
        assert [symbol for symbol, _ in recorder.order] == ["A", "B"]
        assert scheduler.dispatch_count == 2

    async def test_shutdown_cancels_in_flight(self, clock, fake_sleep):
        recorder = Recorder(hold=asyncio.Event())
        scheduler = PriorityScheduler(recorder, RateLimitGate(clock=clock), max_concurrent=1, sleep=fake_sleep)
        scheduler.enqueue("A", DataKind.QUOTE, Priority.LOW)
        scheduler.enqueue("B", DataKind.QUOTE, Priority.LOW)
        await settle(lambda: recorder.running == 1)

        await scheduler.shutdown()

        assert recorder.running == 0
        assert scheduler.pending == 0
        assert not scheduler.running
        assert recorder.order == [("A", DataKind.QUOTE)]

    async def test_reusable_after_shutdown(self, clock, fake_sleep):
        hold = asyncio.Event()
        recorder = Recorder(hold=hold)
        scheduler = PriorityScheduler(
            recorder, RateLimitGate(clock=clock), max_concurrent=2, dispatch_interval=0, sleep=fake_sleep
        )
        scheduler.enqueue("A", DataKind.QUOTE, Priority.LOW)
        # shut down while the first dispatch task exists but has not run yet
        await settle(lambda: scheduler.active == 1)
        await scheduler.shutdown()

        scheduler.enqueue("X", DataKind.QUOTE, Priority.LOW)
        scheduler.enqueue("Y", DataKind.QUOTE, Priority.LOW)
        await settle(lambda: recorder.running == 2)

        hold.set()
        await scheduler.join()
        assert ("X", DataKind.QUOTE) in recorder.order
        assert ("Y", DataKind.QUOTE) in recorder.order
