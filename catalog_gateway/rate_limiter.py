"""
Rate Gate for Upstream Catalog Calls
====================================

Process-wide minimum-gap throttle for outbound MusicBrainz traffic.

MusicBrainz is strict about traffic (roughly one request per second per
client; exceeding it yields 503s and eventually IP bans). Every upstream
attempt, retries included, reserves a start slot here first.

The gate holds a single "next allowed instant". A caller reserves its slot
under the lock and then sleeps outside it, so:
- consecutive reserved start instants are always >= min_interval apart
- the reservation is taken before the call runs, so slow responses cannot
  shrink the effective gap
- send order follows reservation order, not request arrival order
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog
from prometheus_client import Counter, Histogram

logger = structlog.get_logger(__name__)

# Prometheus metrics
rate_gate_acquisitions = Counter(
    'catalog_gateway_rate_gate_acquisitions_total',
    'Total rate gate reservations',
    ['gate', 'status']
)
rate_gate_wait_seconds = Histogram(
    'catalog_gateway_rate_gate_wait_seconds',
    'Time waited for a rate gate slot',
    ['gate'],
    buckets=(0.0, 0.1, 0.25, 0.5, 1.0, 1.1, 2.5, 5.0, 10.0, 30.0)
)


class RateGate:
    """
    Minimum-interval gate shared by all concurrent requests in the process.

    Usage:
        gate = RateGate(min_interval=1.1, name="musicbrainz")
        await gate.acquire()  # Sleeps until this caller's slot
        response = await client.get(url)
    """

    def __init__(
        self,
        min_interval: float,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        """
        Initialize rate gate.

        Args:
            min_interval: Minimum seconds between consecutive call starts
            name: Identifier for logging/metrics
            clock: Monotonic time source
            sleep: Async sleep function (defaults to asyncio.sleep)
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")

        self.min_interval = min_interval
        self.name = name
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._next_allowed: float = 0.0
        self._lock = asyncio.Lock()

    async def reserve(self) -> float:
        """
        Reserve the next start slot without waiting for it.

        Returns:
            Seconds the caller must wait before starting its call
        """
        async with self._lock:
            now = self._clock()
            wait = max(0.0, self._next_allowed - now)
            self._next_allowed = now + wait + self.min_interval
        return wait

    async def acquire(self) -> float:
        """
        Reserve a slot and sleep until it starts.

        Returns:
            Seconds waited
        """
        wait = await self.reserve()

        if wait > 0:
            logger.debug(
                "Rate gate waiting",
                gate=self.name,
                wait_time=round(wait, 3)
            )
            rate_gate_acquisitions.labels(gate=self.name, status='delayed').inc()
            await self._sleep(wait)
        else:
            rate_gate_acquisitions.labels(gate=self.name, status='immediate').inc()

        rate_gate_wait_seconds.labels(gate=self.name).observe(wait)
        return wait

    def reset(self) -> None:
        """Forget the last reservation (admin/test operation)."""
        self._next_allowed = 0.0
        logger.info("Rate gate reset", gate=self.name)

    def get_stats(self) -> dict:
        """Get current gate state for monitoring."""
        return {
            'gate': self.name,
            'min_interval': self.min_interval,
            'next_allowed_in': max(0.0, self._next_allowed - self._clock()),
        }
