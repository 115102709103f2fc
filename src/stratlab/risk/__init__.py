"""
Risk package.

Performance metrics shared by the backtester and the portfolio risk engine.
"""

from .metrics import (
    PerformanceMetrics,
    PerformanceCalculator,
    period_returns,
    max_drawdown_pct,
    sharpe_ratio,
    volatility_pct,
    historical_var,
    kelly_fraction,
)
from .risk_engine import RiskEngine, RiskReport, ExposureSummary

__all__ = [
    'PerformanceMetrics',
    'PerformanceCalculator',
    'period_returns',
    'max_drawdown_pct',
    'sharpe_ratio',
    'volatility_pct',
    'historical_var',
    'kelly_fraction',
    'RiskEngine',
    'RiskReport',
    'ExposureSummary',
]
