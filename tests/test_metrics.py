import math

import pytest

from stratlab.risk.metrics import (
    PerformanceCalculator,
    historical_var,
    kelly_fraction,
    max_drawdown_pct,
    sharpe_ratio,
    volatility_pct,
)


def test_max_drawdown_uses_running_peak():
    assert max_drawdown_pct([100, 120, 90, 130, 117]) == pytest.approx(25.0)
    assert max_drawdown_pct([]) == 0.0
    assert max_drawdown_pct([100, -50]) == 100.0


def test_sharpe_zero_for_flat_or_short_series():
    assert sharpe_ratio([100, 100, 100]) == 0.0
    assert sharpe_ratio([100, 101]) == 0.0
    assert sharpe_ratio([100, 101, 103, 102]) > 0


def test_volatility_is_percent_std_of_returns():
    assert volatility_pct([100, 110, 99]) == pytest.approx(10.0)


def test_var_picks_loss_quantile_of_deltas():
    equity = [1000, 950, 940, 945, 965, 1065]
    assert historical_var(equity, 0.95) == -50
    assert historical_var([1000], 0.95) == 0.0
    with pytest.raises(ValueError):
        historical_var(equity, 1.5)


def test_kelly_fraction_clamped():
    assert kelly_fraction(0.6, 2.0, 1.0, scale=1.0) == pytest.approx(0.4)
    assert kelly_fraction(0.6, 2.0, 1.0, scale=0.5) == pytest.approx(0.2)
    assert kelly_fraction(0.2, 1.0, 1.0) == 0.0
    assert kelly_fraction(1.0, 5.0, 0.0, scale=1.0) == 1.0
    assert kelly_fraction(0.0, 0.0, 1.0) == 0.0


def test_profit_factor_edge_cases():
    only_wins = PerformanceCalculator([100, 110], [10.0], 100).calculate_all_metrics()
    assert math.isinf(only_wins.profit_factor)
    no_trades = PerformanceCalculator([100, 100], [], 100).calculate_all_metrics()
    assert no_trades.profit_factor == 0.0
    assert no_trades.trade_count == 0


def test_calculator_summary():
    metrics = PerformanceCalculator([100, 120, 110], [30.0, -10.0], 100).calculate_all_metrics()
    assert metrics.total_return_pct == pytest.approx(10.0)
    assert metrics.win_rate == pytest.approx(50.0)
    assert metrics.profit_factor == pytest.approx(3.0)
    assert metrics.trade_count == 2
