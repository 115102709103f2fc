import pytest

from stratlab.config.config_manager import PaperTradingSettings
from stratlab.database.models import SessionStatus, StrategyRecord, TradeSide
from stratlab.exceptions import NotFoundError, ValidationError
from stratlab.market.rate_limiter import FetchGate, FetchGateConfig
from stratlab.market.stream import KlineEvent
from stratlab.paper import TradingEngine
from stratlab.portfolio import SessionManager
from stratlab.risk.metrics import PerformanceMetrics
from stratlab.strategies import Signal, SignalDecision

from conftest import make_candles


async def _strategy(db, kelly=0.5, fast=3, slow=8, symbol="BTCUSDT"):
    record = StrategyRecord(
        strategy_type="MaCrossover",
        symbol=symbol,
        interval="1h",
        parameters={"fast_period": fast, "slow_period": slow},
        performance_metrics=PerformanceMetrics(sharpe=0.1, trade_count=12),
        kelly_fraction=kelly,
    )
    await db.save_strategy(record)
    return record


def _manager(db, provider, clock, **settings):
    return SessionManager(
        db,
        provider,
        gate=FetchGate(FetchGateConfig(min_interval=0.0)),
        settings=PaperTradingSettings(**settings),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_start_session_registers_and_persists(db, provider, clock, wave_candles):
    strategy = await _strategy(db)
    clock.now = wave_candles[-1].timestamp + 60_000
    manager = _manager(db, provider, clock)

    record = await manager.start_session(strategy.strategy_id, 5000)

    assert record.initial_capital == 5000
    assert record.current_equity == 5000
    assert record.status is SessionStatus.ACTIVE
    assert manager.subscriptions() == {("BTCUSDT", "1h")}

    live = manager.get_live_session(record.session_id)
    # the last fetched bar is still forming and is not part of the warm-up
    assert live.candles[-1] == wave_candles[-2]
    assert (await db.get_session(record.session_id)).initial_capital == 5000


@pytest.mark.asyncio
async def test_start_session_errors(db, provider, clock):
    manager = _manager(db, provider, clock)
    with pytest.raises(NotFoundError):
        await manager.start_session("strat_missing")

    strategy = await _strategy(db)
    with pytest.raises(ValidationError):
        await manager.start_session(strategy.strategy_id, 0)
    with pytest.raises(ValidationError):
        await manager.start_session(strategy.strategy_id, 1000, execution_mode="yolo")
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_bulk_deploy_splits_by_kelly(db, provider, clock):
    first = await _strategy(db, kelly=0.6)
    second = await _strategy(db, kelly=0.7, fast=4, slow=10)
    manager = _manager(db, provider, clock)

    result = await manager.start_bulk(
        [first.strategy_id, "strat_missing", second.strategy_id, first.strategy_id], 10000
    )

    assert result.success_count == 2
    capitals = [s["initial_capital"] for s in result.succeeded]
    assert capitals == pytest.approx([4615.38, 5384.62], abs=0.01)
    assert sum(capitals) <= 10000 + 1e-6
    assert [(f.item, f.error_code) for f in result.failed] == [("strat_missing", "NOT_FOUND")]
    assert len(manager.registry) == 2


@pytest.mark.asyncio
async def test_bulk_deploy_zero_kelly_fails_that_item(db, provider, clock):
    good = await _strategy(db, kelly=0.5)
    dud = await _strategy(db, kelly=0.0, fast=4, slow=10)
    manager = _manager(db, provider, clock)

    result = await manager.start_bulk([good.strategy_id, dud.strategy_id], 1000)
    assert result.success_count == 1
    assert result.failed[0].item == dud.strategy_id
    assert result.failed[0].error_code == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_bulk_deploy_validates_request(db, provider, clock):
    manager = _manager(db, provider, clock)
    with pytest.raises(ValidationError):
        await manager.start_bulk([], 1000)
    with pytest.raises(ValidationError):
        await manager.start_bulk(["strat_x"], -5)


@pytest.mark.asyncio
async def test_reset_stops_everything(db, provider, clock):
    strategy = await _strategy(db)
    manager = _manager(db, provider, clock)
    await manager.start_session(strategy.strategy_id, 1000)
    await manager.start_session(strategy.strategy_id, 2000)

    clock.advance(60_000)
    assert await manager.reset_all() == 2
    assert len(manager.registry) == 0
    assert manager.subscriptions() == set()

    sessions = await manager.list_sessions()
    assert len(sessions) == 2
    assert all(s.status is SessionStatus.STOPPED for s in sessions)
    assert all(s.stopped_at == clock() for s in sessions)
    assert await manager.list_sessions(status="active") == []


@pytest.mark.asyncio
async def test_stop_session(db, provider, clock):
    strategy = await _strategy(db)
    manager = _manager(db, provider, clock)
    record = await manager.start_session(strategy.strategy_id, 1000)

    stopped = await manager.stop_session(record.session_id)
    assert stopped.status is SessionStatus.STOPPED
    assert record.session_id not in manager.registry
    with pytest.raises(NotFoundError):
        await manager.stop_session("sess_missing")


@pytest.mark.asyncio
async def test_restore_sessions_after_restart(db, provider, clock):
    kept = await _strategy(db)
    dropped = await _strategy(db, fast=4, slow=10)
    manager = _manager(db, provider, clock)
    kept_session = await manager.start_session(kept.strategy_id, 1000)
    dropped_session = await manager.start_session(dropped.strategy_id, 1000)
    await db.delete_strategy(dropped.strategy_id)

    restarted = _manager(db, provider, clock)
    result = await restarted.restore_sessions()

    assert result.succeeded == [kept_session.session_id]
    assert [f.item for f in result.failed] == [dropped_session.session_id]
    assert kept_session.session_id in restarted.registry
    assert (await db.get_session(dropped_session.session_id)).status is SessionStatus.STOPPED

    again = await restarted.restore_sessions()
    assert again.succeeded == [] and again.failed == []


@pytest.mark.asyncio
async def test_bulk_deploy_records_unexpected_errors_per_item(db, provider, clock, monkeypatch):
    good = await _strategy(db, kelly=0.5)
    bad = await _strategy(db, kelly=0.5, symbol="ETHUSDT")
    manager = _manager(db, provider, clock)

    warmup = manager._warmup

    async def fragile_warmup(symbol, interval):
        if symbol == "ETHUSDT":
            raise RuntimeError("decoder blew up")
        return await warmup(symbol, interval)

    monkeypatch.setattr(manager, "_warmup", fragile_warmup)
    result = await manager.start_bulk([good.strategy_id, bad.strategy_id], 10000)

    assert [s["strategy_id"] for s in result.succeeded] == [good.strategy_id]
    assert [(f.item, f.error_code) for f in result.failed] == [(bad.strategy_id, "RUNTIMEERROR")]
    assert len(manager.registry) == 1


@pytest.mark.asyncio
async def test_reset_elsewhere_is_not_undone_by_live_session(db, provider, clock, wave_candles):
    strategy = await _strategy(db)
    clock.now = wave_candles[-1].timestamp + 60_000
    runner = _manager(db, provider, clock)
    resetter = _manager(db, provider, clock)

    record = await runner.start_session(strategy.strategy_id, 1000)
    live = runner.get_live_session(record.session_id)
    await live.apply_signal(SignalDecision(Signal.BUY, "open"), price=100.0, quantity=5)

    clock.advance(60_000)
    assert await resetter.reset_all() == 1
    stopped_at = clock()

    clock.advance(60_000)
    engine = TradingEngine(runner.registry)
    forming = make_candles([120.0], start=wave_candles[-1].timestamp)[0]
    assert await engine.dispatch(KlineEvent("BTCUSDT", "1h", forming, False)) == []

    stored = await db.get_session(record.session_id)
    assert stored.status is SessionStatus.STOPPED
    assert stored.stopped_at == stopped_at
    assert stored.current_equity == pytest.approx(1000.0)

    assert not live.is_active
    assert record.session_id not in runner.registry
    assert runner.subscriptions() == set()
    assert await runner.list_sessions(status="active") == []


@pytest.mark.asyncio
async def test_stop_elsewhere_refuses_later_trades(db, provider, clock, wave_candles):
    strategy = await _strategy(db)
    clock.now = wave_candles[-1].timestamp + 60_000
    runner = _manager(db, provider, clock)
    record = await runner.start_session(strategy.strategy_id, 1000)
    live = runner.get_live_session(record.session_id)
    await live.apply_signal(SignalDecision(Signal.BUY, "open"), price=100.0, quantity=5)

    clock.advance(60_000)
    await _manager(db, provider, clock).stop_session(record.session_id)

    # the runner's copy of the session still looks active until it writes
    listed = await runner.list_sessions()
    assert [s.status for s in listed] == [SessionStatus.STOPPED]

    clock.advance(60_000)
    assert await live.apply_signal(SignalDecision(Signal.SELL, "close"), price=120.0) == []
    assert live.record.status is SessionStatus.STOPPED

    trades = await db.get_trades(record.session_id)
    assert [t.side for t in trades] == [TradeSide.BUY]
    assert (await db.get_session(record.session_id)).status is SessionStatus.STOPPED
