"""
Optimizer package.

Parameter search over the strategy families, ranked by backtest results.
"""

from .optimizer import (
    StrategyOptimizer,
    GenerationResult,
    ScoredCandidate,
    downsample_curve,
    rank_candidates,
    score_candidates,
)

__all__ = [
    'StrategyOptimizer',
    'GenerationResult',
    'ScoredCandidate',
    'downsample_curve',
    'rank_candidates',
    'score_candidates',
]
