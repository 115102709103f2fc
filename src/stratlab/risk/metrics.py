"""
Performance and risk metrics.

Pure functions over equity series and closed-trade P&L, shared by the
backtester (strategy scoring) and the risk engine (portfolio risk).
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence

import numpy as np


def period_returns(equity: Sequence[float]) -> np.ndarray:
    """
    Fractional period-over-period returns.

    A period starting at non-positive equity contributes a 0 return.
    """
    values = np.asarray(equity, dtype=float)
    if len(values) < 2:
        return np.array([], dtype=float)
    prev = values[:-1]
    with np.errstate(divide='ignore', invalid='ignore'):
        returns = np.where(prev > 0, (values[1:] - prev) / prev, 0.0)
    return returns


def max_drawdown_pct(equity: Sequence[float]) -> float:
    """
    Largest peak-to-trough decline as a percentage of the running peak.

    Always within [0, 100]; equity below zero counts as a total loss.
    """
    values = np.asarray(equity, dtype=float)
    if len(values) == 0:
        return 0.0
    peaks = np.maximum.accumulate(values)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(peaks > 0, (peaks - values) / peaks, 0.0)
    return float(np.clip(drawdowns.max(), 0.0, 1.0) * 100.0)


def sharpe_ratio(equity: Sequence[float]) -> float:
    """
    Mean over population standard deviation of period returns, not annualized.

    Zero when there are fewer than two returns or the deviation is zero.
    """
    returns = period_returns(equity)
    if len(returns) < 2:
        return 0.0
    std = float(np.std(returns))
    if std == 0 or not math.isfinite(std):
        return 0.0
    return float(np.mean(returns)) / std


def volatility_pct(equity: Sequence[float]) -> float:
    """Population standard deviation of period returns, in percent."""
    returns = period_returns(equity)
    if len(returns) == 0:
        return 0.0
    return float(np.std(returns)) * 100.0


def historical_var(equity: Sequence[float], confidence: float = 0.95) -> float:
    """
    Historical-simulation Value-at-Risk on equity deltas.

    Deltas between consecutive samples are sorted ascending and the value
    at ``floor((1 - confidence) * n)`` is returned, so a loss comes back
    negative. Zero with fewer than two samples.
    """
    if not 0 < confidence < 1:
        raise ValueError("confidence must be between 0 and 1")
    values = np.asarray(equity, dtype=float)
    if len(values) < 2:
        return 0.0
    deltas = np.sort(np.diff(values))
    index = int(math.floor((1.0 - confidence) * len(deltas)))
    index = min(index, len(deltas) - 1)
    return float(deltas[index])


def kelly_fraction(
    win_rate: float,
    avg_win: float,
    avg_loss: float,
    scale: float = 0.5
) -> float:
    """
    Fractional Kelly criterion.

    Kelly % = W - (1 - W) / R, R = average win / average loss

    Args:
        win_rate: Probability of winning (0.0 to 1.0)
        avg_win: Average winning trade amount
        avg_loss: Average losing trade amount (positive)
        scale: Kelly multiplier (0.5 = half-Kelly)

    Returns:
        Kelly fraction clamped to [0, 1]
    """
    if win_rate <= 0 or avg_win <= 0:
        return 0.0
    if avg_loss <= 0 or win_rate >= 1:
        kelly = 1.0
    else:
        kelly = win_rate - (1.0 - win_rate) / (avg_win / avg_loss)
    return max(0.0, min(kelly * scale, 1.0))


@dataclass
class PerformanceMetrics:
    """Scores stored with each strategy."""
    sharpe: float = 0.0
    win_rate: float = 0.0
    total_return_pct: float = 0.0
    max_drawdown_pct: float = 0.0
    trade_count: int = 0
    profit_factor: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PerformanceMetrics':
        data = data or {}
        return cls(
            sharpe=float(data.get('sharpe', 0.0)),
            win_rate=float(data.get('win_rate', 0.0)),
            total_return_pct=float(data.get('total_return_pct', 0.0)),
            max_drawdown_pct=float(data.get('max_drawdown_pct', 0.0)),
            trade_count=int(data.get('trade_count', data.get('trades', 0))),
            profit_factor=float(data.get('profit_factor', 0.0)),
        )


class PerformanceCalculator:
    """
    Calculate performance metrics for a backtest.

    This class handles:
    - Return and drawdown metrics from the equity curve
    - Trade statistics (win rate, profit factor) from closed-trade P&L
    - The fractional Kelly estimate derived from those statistics
    """

    def __init__(self, equity_curve: List[float], trade_pnls: List[float], initial_capital: float):
        """
        Args:
            equity_curve: Equity after each candle
            trade_pnls: Realized P&L of each closed trade
            initial_capital: Starting equity
        """
        self.equity_curve = equity_curve
        self.trade_pnls = trade_pnls
        self.initial_capital = initial_capital

    def calculate_trade_metrics(self) -> Dict[str, Any]:
        pnls = self.trade_pnls
        if not pnls:
            return {
                'total_trades': 0,
                'win_rate': 0.0,
                'avg_win': 0.0,
                'avg_loss': 0.0,
                'gross_profit': 0.0,
                'gross_loss': 0.0,
                'profit_factor': 0.0,
            }

        wins = [p for p in pnls if p > 0]
        losses = [p for p in pnls if p < 0]

        gross_profit = sum(wins)
        gross_loss = abs(sum(losses))
        if gross_loss > 0:
            profit_factor = gross_profit / gross_loss
        else:
            profit_factor = float('inf') if gross_profit > 0 else 0.0

        return {
            'total_trades': len(pnls),
            'win_rate': len(wins) / len(pnls),
            'avg_win': gross_profit / len(wins) if wins else 0.0,
            'avg_loss': gross_loss / len(losses) if losses else 0.0,
            'gross_profit': gross_profit,
            'gross_loss': gross_loss,
            'profit_factor': profit_factor,
        }

    def calculate_all_metrics(self) -> PerformanceMetrics:
        trades = self.calculate_trade_metrics()
        final = self.equity_curve[-1] if self.equity_curve else self.initial_capital
        return PerformanceMetrics(
            sharpe=sharpe_ratio(self.equity_curve),
            win_rate=trades['win_rate'] * 100.0,
            total_return_pct=(final - self.initial_capital) / self.initial_capital * 100.0,
            max_drawdown_pct=max_drawdown_pct(self.equity_curve),
            trade_count=trades['total_trades'],
            profit_factor=trades['profit_factor'],
        )

    def calculate_kelly_fraction(self, scale: float = 0.5) -> float:
        trades = self.calculate_trade_metrics()
        return kelly_fraction(trades['win_rate'], trades['avg_win'], trades['avg_loss'], scale)
