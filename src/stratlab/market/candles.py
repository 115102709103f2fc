"""
Candle types.

``Candle`` is one OHLCV bar; ``CandleWindow`` is an immutable trailing
window of bars exposed as numpy arrays for indicator math.
"""

from dataclasses import dataclass
from typing import Dict, Any, List, Sequence

import numpy as np


INTERVAL_MS = {
    '1m': 60_000,
    '3m': 3 * 60_000,
    '5m': 5 * 60_000,
    '15m': 15 * 60_000,
    '30m': 30 * 60_000,
    '1h': 60 * 60_000,
    '2h': 2 * 60 * 60_000,
    '4h': 4 * 60 * 60_000,
    '6h': 6 * 60 * 60_000,
    '12h': 12 * 60 * 60_000,
    '1d': 24 * 60 * 60_000,
}


def interval_to_ms(interval: str) -> int:
    """Length of an interval code in milliseconds."""
    try:
        return INTERVAL_MS[interval]
    except KeyError:
        raise ValueError(f"Unknown interval: {interval}") from None


@dataclass(frozen=True)
class Candle:
    """One interval's open/high/low/close/volume summary, keyed by open time (epoch ms)."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @classmethod
    def from_ohlcv(cls, row: Sequence) -> 'Candle':
        """Build from a ccxt-style ``[ts, o, h, l, c, v]`` row."""
        return cls(
            timestamp=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]) if len(row) > 5 and row[5] is not None else 0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'open': self.open,
            'high': self.high,
            'low': self.low,
            'close': self.close,
            'volume': self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Candle':
        return cls(
            timestamp=int(data['timestamp']),
            open=float(data['open']),
            high=float(data['high']),
            low=float(data['low']),
            close=float(data['close']),
            volume=float(data.get('volume', 0.0)),
        )


class CandleWindow:
    """
    Ordered, read-only view over a run of candles.

    Column arrays are built once; slicing returns a new window sharing
    the underlying arrays.
    """

    __slots__ = ('timestamps', 'opens', 'highs', 'lows', 'closes', 'volumes')

    def __init__(
        self,
        timestamps: np.ndarray,
        opens: np.ndarray,
        highs: np.ndarray,
        lows: np.ndarray,
        closes: np.ndarray,
        volumes: np.ndarray
    ):
        self.timestamps = timestamps
        self.opens = opens
        self.highs = highs
        self.lows = lows
        self.closes = closes
        self.volumes = volumes

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> 'CandleWindow':
        return cls(
            np.array([c.timestamp for c in candles], dtype=np.int64),
            np.array([c.open for c in candles], dtype=float),
            np.array([c.high for c in candles], dtype=float),
            np.array([c.low for c in candles], dtype=float),
            np.array([c.close for c in candles], dtype=float),
            np.array([c.volume for c in candles], dtype=float),
        )

    def __len__(self) -> int:
        return len(self.closes)

    def head(self, n: int) -> 'CandleWindow':
        """The first ``n`` candles."""
        return CandleWindow(
            self.timestamps[:n], self.opens[:n], self.highs[:n],
            self.lows[:n], self.closes[:n], self.volumes[:n]
        )

    def without_last(self) -> 'CandleWindow':
        return self.head(max(len(self) - 1, 0))

    def candle(self, index: int) -> Candle:
        return Candle(
            timestamp=int(self.timestamps[index]),
            open=float(self.opens[index]),
            high=float(self.highs[index]),
            low=float(self.lows[index]),
            close=float(self.closes[index]),
            volume=float(self.volumes[index]),
        )

    def to_candles(self) -> List[Candle]:
        return [self.candle(i) for i in range(len(self))]

    @property
    def last_close(self) -> float:
        return float(self.closes[-1])
