"""
Indicators package: causal technical indicators over numpy arrays.
"""

from .technical_indicators import (
    calculate_sma,
    calculate_ema,
    calculate_rsi,
    calculate_true_range,
    calculate_atr,
    calculate_bollinger_bands,
    calculate_macd,
    calculate_obv,
    calculate_rate_of_change,
    rolling_max,
    rolling_min,
    shift,
    crossed_above,
    crossed_below,
)

__all__ = [
    'calculate_sma',
    'calculate_ema',
    'calculate_rsi',
    'calculate_true_range',
    'calculate_atr',
    'calculate_bollinger_bands',
    'calculate_macd',
    'calculate_obv',
    'calculate_rate_of_change',
    'rolling_max',
    'rolling_min',
    'shift',
    'crossed_above',
    'crossed_below',
]
