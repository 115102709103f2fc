"""
Volatility breakout strategy families.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict

import numpy as np

from ..indicators.technical_indicators import (
    calculate_atr,
    calculate_bollinger_bands,
    calculate_sma,
    rolling_min,
    shift,
)
from ..market.candles import CandleWindow
from .signals import Signal, IntRange, FloatRange, ParamRange, stance, strategy_variant


@strategy_variant
@dataclass(frozen=True)
class AtrBreakout:
    """Close outside an SMA +/- ATR channel (Keltner-style breakout)."""
    period: int = 20
    atr_period: int = 14
    atr_multiplier: float = 1.5

    strategy_type: ClassVar[str] = "AtrBreakout"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'period': IntRange(10, 60),
        'atr_period': IntRange(5, 30),
        'atr_multiplier': FloatRange(0.5, 4.0, 0.25),
    }

    def __post_init__(self):
        if self.period < 2 or self.atr_period < 2 or self.atr_multiplier <= 0:
            raise ValueError("AtrBreakout requires periods >= 2 and atr_multiplier > 0")

    @property
    def min_window(self) -> int:
        return max(self.period, self.atr_period)

    def signals(self, window: CandleWindow) -> np.ndarray:
        middle = calculate_sma(window.closes, self.period)
        atr = calculate_atr(window.highs, window.lows, window.closes, self.atr_period)
        upper = middle + self.atr_multiplier * atr
        lower = middle - self.atr_multiplier * atr
        with np.errstate(invalid='ignore'):
            return stance(window.closes > upper, window.closes < lower)

    def reason(self, signal: Signal) -> str:
        side = "above" if signal is Signal.BUY else "below"
        return (
            f"Close broke {side} SMA({self.period}) "
            f"{'+' if signal is Signal.BUY else '-'} {self.atr_multiplier}x ATR({self.atr_period})"
        )


@strategy_variant
@dataclass(frozen=True)
class VolatilitySqueeze:
    """
    Breakout after a Bollinger squeeze.

    A squeeze is a band width within ``tolerance`` of its lowest value over
    ``squeeze_lookback`` bars on the previous candle; the close breaking
    out of the bands then sets the direction.
    """
    period: int = 20
    num_std: float = 2.0
    squeeze_lookback: int = 50
    tolerance: float = 0.1

    strategy_type: ClassVar[str] = "VolatilitySqueeze"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'period': IntRange(10, 40),
        'num_std': FloatRange(1.5, 3.0, 0.25),
        'squeeze_lookback': IntRange(20, 120, 5),
        'tolerance': FloatRange(0.05, 0.5, 0.05),
    }

    def __post_init__(self):
        if self.period < 2 or self.num_std <= 0 or self.squeeze_lookback < 2 or self.tolerance < 0:
            raise ValueError("VolatilitySqueeze parameters out of range")

    @property
    def min_window(self) -> int:
        return self.period + self.squeeze_lookback

    def signals(self, window: CandleWindow) -> np.ndarray:
        upper, middle, lower = calculate_bollinger_bands(window.closes, self.period, self.num_std)
        with np.errstate(divide='ignore', invalid='ignore'):
            width = (upper - lower) / middle
            narrowest = rolling_min(width, self.squeeze_lookback)
            squeezed = shift(width <= narrowest * (1.0 + self.tolerance)) == 1.0
            return stance(
                squeezed & (window.closes > upper),
                squeezed & (window.closes < lower)
            )

    def reason(self, signal: Signal) -> str:
        side = "upper" if signal is Signal.BUY else "lower"
        return f"Squeeze released through {side} band ({self.period}, {self.num_std}σ)"
