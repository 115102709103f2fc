"""
Mean-reversion strategy families.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict

import numpy as np

from ..indicators.technical_indicators import calculate_bollinger_bands, calculate_rsi
from ..market.candles import CandleWindow
from .signals import Signal, IntRange, FloatRange, ParamRange, stance, strategy_variant


@strategy_variant
@dataclass(frozen=True)
class RsiMeanReversion:
    """Buy oversold, sell overbought."""
    period: int = 14
    oversold: float = 30.0
    overbought: float = 70.0

    strategy_type: ClassVar[str] = "RsiMeanReversion"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'period': IntRange(5, 30),
        'oversold': FloatRange(10.0, 40.0, 1.0),
        'overbought': FloatRange(60.0, 90.0, 1.0),
    }

    def __post_init__(self):
        if self.period < 2 or not 0 < self.oversold < self.overbought < 100:
            raise ValueError("RsiMeanReversion requires period >= 2 and 0 < oversold < overbought < 100")

    @property
    def min_window(self) -> int:
        return self.period + 1

    def signals(self, window: CandleWindow) -> np.ndarray:
        rsi = calculate_rsi(window.closes, self.period)
        with np.errstate(invalid='ignore'):
            return stance(rsi < self.oversold, rsi > self.overbought)

    def reason(self, signal: Signal) -> str:
        if signal is Signal.BUY:
            return f"RSI({self.period}) below {self.oversold:g} (oversold)"
        return f"RSI({self.period}) above {self.overbought:g} (overbought)"


@strategy_variant
@dataclass(frozen=True)
class BollingerReversion:
    """Fade closes outside the Bollinger Bands."""
    period: int = 20
    num_std: float = 2.0

    strategy_type: ClassVar[str] = "BollingerReversion"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'period': IntRange(10, 50),
        'num_std': FloatRange(1.0, 3.5, 0.25),
    }

    def __post_init__(self):
        if self.period < 2 or self.num_std <= 0:
            raise ValueError("BollingerReversion requires period >= 2 and num_std > 0")

    @property
    def min_window(self) -> int:
        return self.period

    def signals(self, window: CandleWindow) -> np.ndarray:
        upper, _, lower = calculate_bollinger_bands(window.closes, self.period, self.num_std)
        with np.errstate(invalid='ignore'):
            return stance(window.closes < lower, window.closes > upper)

    def reason(self, signal: Signal) -> str:
        if signal is Signal.BUY:
            return f"Close below lower band ({self.period}, {self.num_std:g}σ)"
        return f"Close above upper band ({self.period}, {self.num_std:g}σ)"
