import logging
import threading

import pytest

from stratlab.config.config_manager import OptimizerSettings
from stratlab.exceptions import ValidationError
from stratlab.optimizer import StrategyOptimizer, downsample_curve, rank_candidates
import stratlab.optimizer.optimizer as optimizer_module
from stratlab.optimizer.optimizer import ScoredCandidate
from stratlab.backtest.engine import BacktestResult
from stratlab.risk.metrics import PerformanceMetrics
from stratlab.market.rate_limiter import FetchGate, FetchGateConfig

from conftest import make_candles, wave_closes


def _settings(**overrides):
    values = dict(min_trades=0, require_positive_return=False, iterations=5, top_n=3, limit=400)
    values.update(overrides)
    return OptimizerSettings(**values)


def _optimizer(provider, db, **overrides):
    gate = FetchGate(FetchGateConfig(min_interval=0.0, base_delay=0.0))
    return StrategyOptimizer(provider, db, gate=gate, settings=_settings(**overrides))


@pytest.mark.asyncio
async def test_generate_persists_ranked_strategies(provider, db):
    optimizer = _optimizer(provider, db)
    result = await optimizer.generate(["btcusdt"], ["1h"], types=["MaCrossover", "PriceMomentum"], seed=1)

    assert result.errors == []
    assert 0 < result.strategies_created <= 3
    assert result.candidates_evaluated > 0

    sharpes = [s.performance_metrics.sharpe for s in result.strategies]
    assert sharpes == sorted(sharpes, reverse=True)

    stored = await db.list_strategies(symbol="BTCUSDT", interval="1h")
    assert {s.strategy_id for s in stored} == {s.strategy_id for s in result.strategies}
    for record in stored:
        assert record.symbol == "BTCUSDT"
        assert record.backtest_curve
        assert 0.0 <= record.kelly_fraction <= 1.0


@pytest.mark.asyncio
async def test_same_seed_same_parameters(provider, db):
    optimizer = _optimizer(provider, db)
    first = await optimizer.generate(["BTCUSDT"], ["1h"], types=["MaCrossover"], seed=42)
    second = await optimizer.generate(["BTCUSDT"], ["1h"], types=["MaCrossover"], seed=42)
    assert [s.parameters for s in first.strategies] == [s.parameters for s in second.strategies]


@pytest.mark.asyncio
async def test_fetch_failure_is_reported_per_item(provider, db):
    optimizer = _optimizer(provider, db)
    result = await optimizer.generate(["BTCUSDT", "NOPEUSDT"], ["1h"], types=["MaCrossover"], seed=3)

    assert result.strategies_created > 0
    assert [e.item for e in result.errors] == ["NOPEUSDT 1h"]
    assert result.errors[0].error_code == "SYMBOL_NOT_FOUND"


@pytest.mark.asyncio
async def test_short_history_reports_insufficient_data(db):
    from stratlab.market.provider import InMemoryMarketDataProvider

    provider = InMemoryMarketDataProvider()
    provider.add_series("ETHUSDT", "1h", make_candles(wave_closes(12)))
    optimizer = _optimizer(provider, db)

    result = await optimizer.generate(["ETHUSDT"], ["1h"], types=["MacdTrend"], seed=5)
    assert result.strategies_created == 0
    assert [e.item for e in result.errors] == ["ETHUSDT 1h MacdTrend"]
    assert result.errors[0].error_code == "INSUFFICIENT_DATA"


@pytest.mark.asyncio
async def test_filters_drop_weak_candidates(provider, db):
    optimizer = _optimizer(provider, db, min_trades=10_000)
    result = await optimizer.generate(["BTCUSDT"], ["1h"], types=["MaCrossover"], seed=1)
    assert result.strategies_created == 0
    assert result.errors == []
    assert result.candidates_evaluated > 0


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"symbols": [], "intervals": ["1h"]},
    {"symbols": ["BTCUSDT"], "intervals": []},
    {"symbols": [" "], "intervals": ["1h"]},
    {"symbols": ["BTCUSDT"], "intervals": ["1h"], "top_n": 0},
    {"symbols": ["BTCUSDT"], "intervals": ["1h"], "iterations": -1},
    {"symbols": ["BTCUSDT"], "intervals": ["1h"], "types": ["Astrology"]},
])
async def test_invalid_requests_rejected_before_fetching(provider, db, kwargs):
    optimizer = _optimizer(provider, db)
    with pytest.raises(ValidationError):
        await optimizer.generate(**kwargs)
    assert provider.calls == []


def _candidate(sharpe, drawdown, trades):
    metrics = PerformanceMetrics(sharpe=sharpe, max_drawdown_pct=drawdown, trade_count=trades)
    return ScoredCandidate(strategy=(sharpe, drawdown, trades), result=BacktestResult([1.0], metrics))


def test_rank_breaks_ties_by_drawdown_then_trades():
    candidates = [
        _candidate(1.0, 20.0, 5),
        _candidate(2.0, 30.0, 5),
        _candidate(1.0, 10.0, 5),
        _candidate(1.0, 10.0, 9),
    ]
    ranked = rank_candidates(candidates, 3)
    assert [c.strategy for c in ranked] == [(2.0, 30.0, 5), (1.0, 10.0, 9), (1.0, 10.0, 5)]


def test_downsample_curve_keeps_last_point():
    curve = list(range(101))
    sampled = downsample_curve(curve, 50)
    assert sampled[0] == 0
    assert sampled[-1] == 100
    assert len(sampled) <= 52
    assert downsample_curve([], 50) == []
    assert downsample_curve([1.0, 2.0], 50) == [1.0, 2.0]


def test_trade_filter_needs_more_than_min_trades(provider, db):
    optimizer = _optimizer(provider, db, min_trades=10)
    assert not optimizer._passes_filters(_candidate(1.0, 5.0, 10))
    assert optimizer._passes_filters(_candidate(1.0, 5.0, 11))


@pytest.mark.asyncio
async def test_backtests_run_off_the_event_loop_thread(provider, db, monkeypatch):
    loop_thread = threading.get_ident()
    threads = []
    score = optimizer_module.score_candidates

    def recording_score(*args, **kwargs):
        threads.append(threading.get_ident())
        return score(*args, **kwargs)

    monkeypatch.setattr(optimizer_module, "score_candidates", recording_score)
    result = await _optimizer(provider, db).generate(["BTCUSDT"], ["1h"], types=["MaCrossover"], seed=1)

    assert result.strategies_created > 0
    assert threads
    assert loop_thread not in threads


@pytest.mark.asyncio
async def test_generation_events_share_a_run_id(provider, db, caplog):
    with caplog.at_level(logging.INFO, logger="stratlab.optimizer.events"):
        result = await _optimizer(provider, db).generate(["BTCUSDT"], ["1h"], types=["MaCrossover"], seed=1)

    events = [r for r in caplog.records if r.name == "stratlab.optimizer.events"]
    assert len(events) == 2
    assert result.run_id
    assert {getattr(r, "correlation_id", None) for r in events} == {result.run_id}
    assert result.to_dict()["run_id"] == result.run_id
