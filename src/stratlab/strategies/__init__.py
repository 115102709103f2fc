"""
Strategies package.

A closed set of strategy families, each a frozen dataclass exposing
``evaluate(window) -> SignalDecision``.
"""

from .signals import (
    Signal,
    SignalDecision,
    IntRange,
    FloatRange,
    STRATEGY_VARIANTS,
    strategy_variant,
)
from .trend import (
    MaCrossover,
    MacdTrend,
    PriceMomentum,
    ObvTrend,
    AdaptiveMaCrossover,
    DynamicTrend,
)
from .breakout import AtrBreakout, VolatilitySqueeze
from .reversion import RsiMeanReversion, BollingerReversion
from .registry import (
    Strategy,
    strategy_types,
    get_strategy_class,
    build_strategy,
    sample_strategies,
)

__all__ = [
    'Signal',
    'SignalDecision',
    'IntRange',
    'FloatRange',
    'STRATEGY_VARIANTS',
    'strategy_variant',
    'MaCrossover',
    'MacdTrend',
    'PriceMomentum',
    'ObvTrend',
    'AdaptiveMaCrossover',
    'DynamicTrend',
    'AtrBreakout',
    'VolatilitySqueeze',
    'RsiMeanReversion',
    'BollingerReversion',
    'Strategy',
    'strategy_types',
    'get_strategy_class',
    'build_strategy',
    'sample_strategies',
]
