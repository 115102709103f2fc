import logging

import pytest

from stratlab.config.config_manager import PortfolioSettings
from stratlab.database.models import PortfolioPoint, SessionRecord, SessionStatus
from stratlab.risk import RiskEngine


def _session(capital, equity, position, status=SessionStatus.ACTIVE):
    return SessionRecord(
        strategy_id="strat_x",
        symbol="BTCUSDT",
        interval="1h",
        initial_capital=capital,
        current_equity=equity,
        current_position=position,
        entry_price=100.0 if position else None,
        status=status,
    )


def test_exposure_counts_open_positions_of_active_sessions():
    sessions = [
        _session(1000.0, 1100.0, 11.0),
        _session(1000.0, 1000.0, 0.0),
        _session(5000.0, 4000.0, -3.0, status=SessionStatus.STOPPED),
    ]
    exposure = RiskEngine.exposure(sessions)
    assert exposure.total_initial == 2000.0
    assert exposure.total_exposure == 1100.0
    assert exposure.exposure_pct == pytest.approx(55.0)
    assert exposure.cash_pct == pytest.approx(45.0)
    assert exposure.active_sessions == 2
    assert exposure.open_positions == 1


def test_exposure_without_sessions_is_zero():
    exposure = RiskEngine.exposure([])
    assert exposure.exposure_pct == 0.0
    assert exposure.cash_pct == 0.0


def test_report_over_portfolio_history():
    history = [PortfolioPoint(i, v) for i, v in enumerate([1000, 950, 940, 945, 965, 1065])]
    report = RiskEngine(confidence=0.95).report(history)
    assert report.var == -50
    assert report.max_drawdown_pct == pytest.approx(6.0)
    assert report.sample_count == 6
    assert report.volatility > 0
    assert report.to_dict()["exposure"]["active_sessions"] == 0


def test_report_on_empty_history():
    report = RiskEngine().report([])
    assert report.var == 0.0
    assert report.max_drawdown_pct == 0.0
    assert report.volatility == 0.0


def test_drawdown_alert_logged(caplog):
    engine = RiskEngine.from_settings(PortfolioSettings(drawdown_alert_pct=5.0))
    with caplog.at_level(logging.WARNING, logger="stratlab.risk.events"):
        engine.report([1000, 900])
    assert "drawdown" in caplog.text.lower()


def test_invalid_confidence():
    with pytest.raises(ValueError):
        RiskEngine(confidence=1.0)
