"""
Strategy registry.

Maps persisted ``strategy_type`` tags to variant classes and builds
strategies from stored parameters.
"""

import random
from typing import Any, Dict, List, Optional, Union

from .signals import STRATEGY_VARIANTS
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


Strategy = Union[
    MaCrossover,
    MacdTrend,
    PriceMomentum,
    ObvTrend,
    AdaptiveMaCrossover,
    DynamicTrend,
    AtrBreakout,
    VolatilitySqueeze,
    RsiMeanReversion,
    BollingerReversion,
]


def strategy_types() -> List[str]:
    """All registered strategy type tags, in registration order."""
    return list(STRATEGY_VARIANTS)


def get_strategy_class(strategy_type: str):
    try:
        return STRATEGY_VARIANTS[strategy_type]
    except KeyError:
        raise ValueError(f"Unknown strategy type: {strategy_type}") from None


def build_strategy(strategy_type: str, parameters: Optional[Dict[str, Any]] = None) -> Strategy:
    """
    Instantiate a strategy from its type tag and stored parameters.

    Unknown parameter names are ignored; missing ones take the family default.

    Raises:
        ValueError: Unknown type or invalid parameters.
    """
    cls = get_strategy_class(strategy_type)
    known = cls.__dataclass_fields__
    params = {k: v for k, v in (parameters or {}).items() if k in known}
    return cls(**params)


def sample_strategies(strategy_type: str, count: int, rng: random.Random) -> List[Strategy]:
    """
    Draw up to ``count`` distinct parameterizations of one family.

    Stops early when the parameter space runs out of new combinations.
    """
    cls = get_strategy_class(strategy_type)
    seen = set()
    out = []
    misses = 0
    while len(out) < count and misses < count * 10:
        candidate = cls.sample(rng)
        if candidate in seen:
            misses += 1
            continue
        seen.add(candidate)
        out.append(candidate)
    return out
