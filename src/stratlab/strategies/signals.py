"""
Signals and the strategy variant machinery.

A strategy family is a frozen dataclass holding its parameters, declared
with ``@strategy_variant``. The decorator checks the family provides the
pieces every variant needs and attaches the shared ``evaluate`` and
``sample`` entry points; there is no common base class.

Each family implements:
- ``strategy_type``: ClassVar tag stored with persisted strategies
- ``PARAM_SPACE``: ClassVar mapping parameter name to an ``IntRange``/``FloatRange``
- ``min_window``: candles required before the first non-HOLD signal
- ``signals(window)``: int8 array (1 BUY, -1 SELL, 0 HOLD), one per candle, causal
- ``reason(signal)``: human-readable reason for a BUY or SELL
"""

import random
from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Dict, Type, Union

import numpy as np

from ..market.candles import CandleWindow


class Signal(Enum):
    """A strategy's per-tick directional output."""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def direction(self) -> int:
        return _DIRECTIONS[self]

    @classmethod
    def from_code(cls, code: int) -> 'Signal':
        if code > 0:
            return cls.BUY
        if code < 0:
            return cls.SELL
        return cls.HOLD


_DIRECTIONS = {Signal.BUY: 1, Signal.SELL: -1, Signal.HOLD: 0}


@dataclass(frozen=True)
class SignalDecision:
    """Signal plus the reason it fired."""
    signal: Signal
    reason: str = ""

    @property
    def is_directional(self) -> bool:
        return self.signal is not Signal.HOLD


@dataclass(frozen=True)
class IntRange:
    """Inclusive integer parameter range."""
    low: int
    high: int
    step: int = 1

    def sample(self, rng: random.Random) -> int:
        return rng.randrange(self.low, self.high + 1, self.step)


@dataclass(frozen=True)
class FloatRange:
    """Inclusive float parameter range discretized by ``step``."""
    low: float
    high: float
    step: float = 0.1

    def sample(self, rng: random.Random) -> float:
        n_steps = int(round((self.high - self.low) / self.step))
        return round(self.low + rng.randint(0, n_steps) * self.step, 6)


ParamRange = Union[IntRange, FloatRange]

# Strategy type tag -> variant class
STRATEGY_VARIANTS: Dict[str, Type] = {}

MAX_SAMPLE_ATTEMPTS = 100


def stance(long_mask: np.ndarray, short_mask: np.ndarray) -> np.ndarray:
    """Combine boolean masks into signal codes; long wins ties."""
    codes = np.zeros(len(long_mask), dtype=np.int8)
    codes[np.asarray(short_mask, dtype=bool)] = -1
    codes[np.asarray(long_mask, dtype=bool)] = 1
    return codes


def _evaluate(self, window: CandleWindow) -> SignalDecision:
    """Signal for the newest candle of ``window``."""
    if len(window) < self.min_window:
        return SignalDecision(Signal.HOLD, "warming up")
    codes = self.signals(window)
    signal = Signal.from_code(int(codes[-1]))
    if signal is Signal.HOLD:
        return SignalDecision(Signal.HOLD, "no signal")
    return SignalDecision(signal, self.reason(signal))


def _sample(cls, rng: random.Random):
    """
    Draw a random valid parameterization.

    Raises:
        ValueError: If no valid combination was drawn.
    """
    for _ in range(MAX_SAMPLE_ATTEMPTS):
        params = {name: space.sample(rng) for name, space in cls.PARAM_SPACE.items()}
        try:
            return cls(**params)
        except ValueError:
            continue
    raise ValueError(f"Could not sample valid parameters for {cls.strategy_type}")


def _parameters(self) -> Dict[str, Any]:
    return asdict(self)


def strategy_variant(cls):
    """Register a strategy family and attach the shared entry points."""
    for attr in ('strategy_type', 'PARAM_SPACE', 'min_window', 'signals', 'reason'):
        if not hasattr(cls, attr):
            raise TypeError(f"{cls.__name__} is missing '{attr}'")
    missing = set(cls.PARAM_SPACE) - {f.name for f in fields(cls)}
    if missing:
        raise TypeError(f"{cls.__name__} PARAM_SPACE names unknown fields: {sorted(missing)}")

    cls.evaluate = _evaluate
    cls.sample = classmethod(_sample)
    cls.parameters = _parameters
    STRATEGY_VARIANTS[cls.strategy_type] = cls
    return cls
