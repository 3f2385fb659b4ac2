"""
Unit tests for the upstream rate gate.
"""

import asyncio
import time

import pytest

from catalog_gateway.rate_limiter import RateGate


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestRateGate:
    """Test cases for RateGate."""

    @pytest.mark.asyncio
    async def test_first_acquire_does_not_wait(self, recorded_sleeps):
        """Test an idle gate lets the first call through immediately."""
        delays, fake_sleep = recorded_sleeps
        gate = RateGate(1.1, clock=FakeClock(), sleep=fake_sleep)

        waited = await gate.acquire()

        assert waited == 0.0
        assert delays == []

    @pytest.mark.asyncio
    async def test_back_to_back_reservations_are_spaced(self, recorded_sleeps):
        """Test reservations made at the same instant are min_interval apart."""
        delays, fake_sleep = recorded_sleeps
        gate = RateGate(1.1, clock=FakeClock(), sleep=fake_sleep)

        waits = [await gate.acquire() for _ in range(4)]

        assert waits == pytest.approx([0.0, 1.1, 2.2, 3.3])
        assert delays == pytest.approx([1.1, 2.2, 3.3])

    @pytest.mark.asyncio
    async def test_elapsed_time_reduces_wait(self, recorded_sleeps):
        """Test time already elapsed since the last slot is credited."""
        delays, fake_sleep = recorded_sleeps
        clock = FakeClock()
        gate = RateGate(1.1, clock=clock, sleep=fake_sleep)

        await gate.acquire()
        clock.now += 0.8
        waited = await gate.acquire()

        assert waited == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_no_wait_after_full_interval(self, recorded_sleeps):
        """Test a call arriving after the gap has passed is not delayed."""
        delays, fake_sleep = recorded_sleeps
        clock = FakeClock()
        gate = RateGate(1.1, clock=clock, sleep=fake_sleep)

        await gate.acquire()
        clock.now += 5.0
        waited = await gate.acquire()

        assert waited == 0.0
        assert delays == []

    @pytest.mark.asyncio
    async def test_reset_clears_pending_reservation(self, recorded_sleeps):
        """Test reset makes the next call immediate again."""
        delays, fake_sleep = recorded_sleeps
        gate = RateGate(1.1, clock=FakeClock(), sleep=fake_sleep)

        await gate.acquire()
        gate.reset()

        assert await gate.acquire() == 0.0

    def test_negative_interval_rejected(self):
        """Test a negative interval is a configuration error."""
        with pytest.raises(ValueError):
            RateGate(-1.0)

    @pytest.mark.asyncio
    async def test_concurrent_callers_respect_gap(self):
        """Test concurrent acquirers start at least min_interval apart in real time."""
        gap = 0.05
        gate = RateGate(gap)
        starts = []

        async def call():
            await gate.acquire()
            starts.append(time.monotonic())

        await asyncio.gather(*(call() for _ in range(5)))

        starts.sort()
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        # asyncio timers may fire up to one clock tick early
        assert all(g >= gap - 0.005 for g in gaps), gaps

    def test_stats_report_interval(self):
        """Test monitoring stats."""
        gate = RateGate(1.1, name="musicbrainz")

        stats = gate.get_stats()

        assert stats["gate"] == "musicbrainz"
        assert stats["min_interval"] == 1.1
        assert stats["next_allowed_in"] == 0.0
