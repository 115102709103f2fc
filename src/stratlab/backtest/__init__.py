"""
Backtest package.

Replays candle history through a strategy and scores the result.
"""

from .engine import (
    Backtester,
    BacktestConfig,
    BacktestResult,
    BacktestTrade,
    ExecutionPricePolicy,
    run_backtest,
)

__all__ = [
    'Backtester',
    'BacktestConfig',
    'BacktestResult',
    'BacktestTrade',
    'ExecutionPricePolicy',
    'run_backtest',
]
