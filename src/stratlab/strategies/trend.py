"""
Trend-following strategy families.
"""

from dataclasses import dataclass
from typing import ClassVar, Dict

import numpy as np

from ..indicators.technical_indicators import (
    calculate_atr,
    calculate_ema,
    calculate_kama,
    calculate_macd,
    calculate_obv,
    calculate_rate_of_change,
    shift,
)
from ..market.candles import CandleWindow
from .signals import Signal, IntRange, FloatRange, ParamRange, stance, strategy_variant


@strategy_variant
@dataclass(frozen=True)
class MaCrossover:
    """Long while the fast EMA is above the slow EMA, short while below."""
    fast_period: int = 9
    slow_period: int = 21

    strategy_type: ClassVar[str] = "MaCrossover"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'fast_period': IntRange(3, 30),
        'slow_period': IntRange(10, 120),
    }

    def __post_init__(self):
        if self.fast_period < 2 or self.slow_period <= self.fast_period:
            raise ValueError("MaCrossover requires 2 <= fast_period < slow_period")

    @property
    def min_window(self) -> int:
        return self.slow_period + 1

    def signals(self, window: CandleWindow) -> np.ndarray:
        fast = calculate_ema(window.closes, self.fast_period)
        slow = calculate_ema(window.closes, self.slow_period)
        with np.errstate(invalid='ignore'):
            return stance(fast > slow, fast < slow)

    def reason(self, signal: Signal) -> str:
        side = "above" if signal is Signal.BUY else "below"
        return f"EMA({self.fast_period}) {side} EMA({self.slow_period})"


@strategy_variant
@dataclass(frozen=True)
class MacdTrend:
    """Follows the sign of the MACD histogram."""
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9

    strategy_type: ClassVar[str] = "MacdTrend"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'fast_period': IntRange(5, 20),
        'slow_period': IntRange(15, 50),
        'signal_period': IntRange(3, 15),
    }

    def __post_init__(self):
        if self.fast_period < 2 or self.slow_period <= self.fast_period or self.signal_period < 2:
            raise ValueError("MacdTrend requires 2 <= fast_period < slow_period and signal_period >= 2")

    @property
    def min_window(self) -> int:
        return self.slow_period + self.signal_period

    def signals(self, window: CandleWindow) -> np.ndarray:
        _, _, histogram = calculate_macd(
            window.closes, self.fast_period, self.slow_period, self.signal_period
        )
        with np.errstate(invalid='ignore'):
            return stance(histogram > 0, histogram < 0)

    def reason(self, signal: Signal) -> str:
        side = "above" if signal is Signal.BUY else "below"
        return (
            f"MACD({self.fast_period},{self.slow_period}) {side} "
            f"signal({self.signal_period})"
        )


@strategy_variant
@dataclass(frozen=True)
class PriceMomentum:
    """Rate of change over ``lookback`` bars beyond +/- ``threshold_pct``."""
    lookback: int = 10
    threshold_pct: float = 2.0

    strategy_type: ClassVar[str] = "PriceMomentum"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'lookback': IntRange(3, 60),
        'threshold_pct': FloatRange(0.2, 8.0, 0.2),
    }

    def __post_init__(self):
        if self.lookback < 1 or self.threshold_pct <= 0:
            raise ValueError("PriceMomentum requires lookback >= 1 and threshold_pct > 0")

    @property
    def min_window(self) -> int:
        return self.lookback + 1

    def signals(self, window: CandleWindow) -> np.ndarray:
        roc = calculate_rate_of_change(window.closes, self.lookback)
        with np.errstate(invalid='ignore'):
            return stance(roc > self.threshold_pct, roc < -self.threshold_pct)

    def reason(self, signal: Signal) -> str:
        if signal is Signal.BUY:
            return f"{self.lookback}-bar momentum above +{self.threshold_pct}%"
        return f"{self.lookback}-bar momentum below -{self.threshold_pct}%"


@strategy_variant
@dataclass(frozen=True)
class ObvTrend:
    """On-balance volume against its own EMA."""
    period: int = 20

    strategy_type: ClassVar[str] = "ObvTrend"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'period': IntRange(5, 80),
    }

    def __post_init__(self):
        if self.period < 2:
            raise ValueError("ObvTrend requires period >= 2")

    @property
    def min_window(self) -> int:
        return self.period + 1

    def signals(self, window: CandleWindow) -> np.ndarray:
        obv = calculate_obv(window.closes, window.volumes)
        smoothed = calculate_ema(obv, self.period)
        with np.errstate(invalid='ignore'):
            return stance(obv > smoothed, obv < smoothed)

    def reason(self, signal: Signal) -> str:
        side = "above" if signal is Signal.BUY else "below"
        return f"OBV {side} its EMA({self.period})"


@strategy_variant
@dataclass(frozen=True)
class AdaptiveMaCrossover:
    """
    Kaufman adaptive average against a slow EMA.

    The adaptive average hugs price in a clean trend and flattens in chop,
    so it crosses the slow EMA less often than a fixed fast EMA would in
    sideways markets.
    """
    er_period: int = 10
    fast_sc_period: int = 2
    slow_sc_period: int = 30
    slow_period: int = 50

    strategy_type: ClassVar[str] = "AdaptiveMaCrossover"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'er_period': IntRange(5, 30),
        'fast_sc_period': IntRange(2, 5),
        'slow_sc_period': IntRange(20, 60),
        'slow_period': IntRange(31, 120),
    }

    def __post_init__(self):
        if self.er_period < 2 or self.fast_sc_period < 1 or self.slow_sc_period <= self.fast_sc_period:
            raise ValueError(
                "AdaptiveMaCrossover requires er_period >= 2 and 1 <= fast_sc_period < slow_sc_period"
            )
        if self.slow_period <= self.er_period:
            raise ValueError("AdaptiveMaCrossover requires slow_period > er_period")

    @property
    def min_window(self) -> int:
        return self.slow_period + 1

    def signals(self, window: CandleWindow) -> np.ndarray:
        adaptive = calculate_kama(window.closes, self.er_period, self.fast_sc_period, self.slow_sc_period)
        slow = calculate_ema(window.closes, self.slow_period)
        with np.errstate(invalid='ignore'):
            return stance(adaptive > slow, adaptive < slow)

    def reason(self, signal: Signal) -> str:
        side = "above" if signal is Signal.BUY else "below"
        return f"KAMA({self.er_period}) {side} EMA({self.slow_period})"


@strategy_variant
@dataclass(frozen=True)
class DynamicTrend:
    """
    EMA trend traded only in an active volatility regime.

    Direction is the close against a rising (falling) EMA. The regime is
    active while the short ATR is at least ``regime_ratio`` times the long
    ATR; quiet markets hold.
    """
    trend_period: int = 30
    atr_period: int = 10
    regime_period: int = 50
    regime_ratio: float = 0.8

    strategy_type: ClassVar[str] = "DynamicTrend"
    PARAM_SPACE: ClassVar[Dict[str, ParamRange]] = {
        'trend_period': IntRange(10, 100),
        'atr_period': IntRange(5, 20),
        'regime_period': IntRange(25, 100, 5),
        'regime_ratio': FloatRange(0.5, 1.5, 0.1),
    }

    def __post_init__(self):
        if self.trend_period < 2 or self.atr_period < 2:
            raise ValueError("DynamicTrend requires trend_period and atr_period >= 2")
        if self.regime_period <= self.atr_period or self.regime_ratio <= 0:
            raise ValueError("DynamicTrend requires regime_period > atr_period and regime_ratio > 0")

    @property
    def min_window(self) -> int:
        return max(self.trend_period + 1, self.regime_period)

    def signals(self, window: CandleWindow) -> np.ndarray:
        closes = window.closes
        trend = calculate_ema(closes, self.trend_period)
        short_atr = calculate_atr(window.highs, window.lows, closes, self.atr_period)
        long_atr = calculate_atr(window.highs, window.lows, closes, self.regime_period)
        with np.errstate(invalid='ignore'):
            active = short_atr >= self.regime_ratio * long_atr
            rising = trend > shift(trend)
            falling = trend < shift(trend)
            return stance(
                active & rising & (closes > trend),
                active & falling & (closes < trend),
            )

    def reason(self, signal: Signal) -> str:
        side = "above rising" if signal is Signal.BUY else "below falling"
        return (
            f"Close {side} EMA({self.trend_period}) with ATR({self.atr_period}) "
            f">= {self.regime_ratio}x ATR({self.regime_period})"
        )
