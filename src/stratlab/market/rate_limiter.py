"""
Request pacing for market-data fetches.

All optimizer runs share one ``FetchGate`` so the provider sees a bounded
number of concurrent requests with a minimum spacing between request
starts. Throttled requests are retried with exponential backoff.
"""

import asyncio
import time
from typing import Optional, Callable, Any, Awaitable
from dataclasses import dataclass
import logging

from ..exceptions import RateLimitError
from ..utils.helpers import calculate_backoff_delay

logger = logging.getLogger(__name__)


@dataclass
class FetchGateConfig:
    """Configuration for request pacing."""

    # Concurrency settings
    max_concurrent: int = 4
    min_interval: float = 0.1

    # Backoff settings
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> 'FetchGateConfig':
        """Build from ``MarketDataSettings``."""
        return cls(
            max_concurrent=settings.max_concurrent_requests,
            min_interval=settings.min_request_interval,
            max_retries=settings.max_retries,
            base_delay=settings.retry_delay_base,
            max_delay=settings.retry_delay_max,
        )


class FetchGate:
    """
    Bounded-concurrency limiter with minimum spacing between request starts.

    Example:
        ```python
        gate = FetchGate(FetchGateConfig(max_concurrent=2))

        candles = await gate.run(provider.fetch, 'BTCUSDT', '1h', 1000)
        ```

    Waiting for a slot is a suspension point, never a CPU spin.
    """

    def __init__(self, config: Optional[FetchGateConfig] = None):
        self.config = config or FetchGateConfig()

        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)
        self._spacing_lock = asyncio.Lock()
        self._last_start: float = 0.0

        # Statistics
        self._total_requests: int = 0
        self._throttled_requests: int = 0
        self._in_flight: int = 0

    async def acquire(self) -> None:
        """Wait for a free slot and for the minimum spacing to elapse."""
        await self._semaphore.acquire()
        try:
            async with self._spacing_lock:
                now = time.monotonic()
                wait = self._last_start + self.config.min_interval - now
                if wait > 0:
                    await asyncio.sleep(wait)
                self._last_start = time.monotonic()
        except BaseException:
            self._semaphore.release()
            raise
        self._total_requests += 1
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> 'FetchGate':
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def calculate_backoff_delay(self, attempt: int) -> float:
        return calculate_backoff_delay(
            attempt,
            self.config.base_delay,
            self.config.max_delay,
            self.config.exponential_base
        )

    async def run(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute ``func`` inside the gate, retrying on ``RateLimitError``.

        The provider's ``retry_after`` hint wins over the computed backoff.
        The slot is released while backing off.

        Raises:
            RateLimitError: When retries are exhausted.
        """
        for attempt in range(self.config.max_retries + 1):
            async with self:
                try:
                    return await func(*args, **kwargs)
                except RateLimitError as e:
                    if attempt >= self.config.max_retries:
                        raise
                    self._throttled_requests += 1
                    delay = (
                        e.retry_after if e.retry_after is not None
                        else self.calculate_backoff_delay(attempt)
                    )
            logger.warning(f"Rate limited by provider, retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
        raise RuntimeError("unreachable")

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def get_stats(self) -> dict:
        return {
            'total_requests': self._total_requests,
            'throttled_requests': self._throttled_requests,
            'in_flight': self._in_flight,
            'max_concurrent': self.config.max_concurrent,
        }
