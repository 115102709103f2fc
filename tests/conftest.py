"""
Pytest configuration and shared fixtures for test suite.
"""
from __future__ import annotations

import math
from typing import List, Sequence

import pytest
import pytest_asyncio

from stratlab.database.db_manager import DatabaseManager
from stratlab.market.candles import Candle
from stratlab.market.provider import InMemoryMarketDataProvider

HOUR_MS = 60 * 60_000
START_MS = 1_700_000_000_000 // HOUR_MS * HOUR_MS


def make_candles(closes: Sequence[float], start: int = START_MS, step: int = HOUR_MS) -> List[Candle]:
    """Candles whose open is the previous close, with a small high/low band."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(Candle(
            timestamp=start + i * step,
            open=prev,
            high=max(prev, close) * 1.001,
            low=min(prev, close) * 0.999,
            close=close,
            volume=1000.0 + (i % 7) * 50.0,
        ))
        prev = close
    return candles


def wave_closes(n: int = 400, base: float = 100.0, amplitude: float = 10.0, period: int = 40) -> List[float]:
    """A sine-shaped price series: plenty of trend changes for crossover strategies."""
    return [base + amplitude * math.sin(2 * math.pi * i / period) + i * 0.01 for i in range(n)]


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wave_candles():
    return make_candles(wave_closes())


@pytest.fixture
def provider(wave_candles):
    provider = InMemoryMarketDataProvider()
    provider.add_series("BTCUSDT", "1h", wave_candles)
    return provider


@pytest_asyncio.fixture
async def db():
    manager = DatabaseManager(":memory:", write_retries=2, retry_delay_base=0, retry_delay_max=0)
    await manager.connect()
    yield manager
    await manager.close()
