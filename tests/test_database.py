import sqlite3
from dataclasses import replace

import pytest

from stratlab.database.db_manager import DatabaseManager
from stratlab.database.models import (
    EquitySnapshot,
    PortfolioPoint,
    SessionRecord,
    SessionStatus,
    StrategyRecord,
    TradeRecord,
    TradeSide,
)
from stratlab.exceptions import PersistenceError
from stratlab.risk.metrics import PerformanceMetrics


def _strategy(**overrides):
    values = dict(
        strategy_type="RsiMeanReversion",
        symbol="ETHUSDT",
        interval="4h",
        parameters={"period": 14, "oversold": 30.0, "overbought": 70.0},
        performance_metrics=PerformanceMetrics(sharpe=0.21, win_rate=55.0, trade_count=14),
        kelly_fraction=0.12,
        backtest_curve=[10000.0, 10100.0, 10250.0],
    )
    values.update(overrides)
    return StrategyRecord(**values)


@pytest.mark.asyncio
async def test_strategy_round_trip(db):
    record = _strategy()
    await db.save_strategy(record)

    loaded = await db.get_strategy(record.strategy_id)
    assert loaded.parameters == record.parameters
    assert loaded.performance_metrics == record.performance_metrics
    assert loaded.backtest_curve == record.backtest_curve
    assert loaded.name == "ETHUSDT 4h RsiMeanReversion"

    assert [s.strategy_id for s in await db.list_strategies(symbol="ETHUSDT")] == [record.strategy_id]
    assert await db.list_strategies(interval="1h") == []
    assert await db.delete_strategy(record.strategy_id)
    assert await db.get_strategy(record.strategy_id) is None


@pytest.mark.asyncio
async def test_session_trades_and_snapshots(db):
    session = SessionRecord("strat_x", "ETHUSDT", "4h", 5000.0, created_at=1_000)
    await db.create_session(session)

    trade = TradeRecord(session.session_id, "ETHUSDT", TradeSide.BUY, 2000.0, 2.5, timestamp=2_000)
    session.current_position = 2.5
    session.entry_price = 2000.0
    session.last_update = 2_000
    await db.save_session_state(session, [trade], EquitySnapshot(session.session_id, 5000.0, 2_000))

    stored = await db.get_session(session.session_id)
    assert stored.current_position == 2.5
    assert stored.entry_price == 2000.0
    assert [t.trade_id for t in await db.get_trades(session.session_id)] == [trade.trade_id]
    assert [s.timestamp for s in await db.get_equity_curve(session.session_id)] == [1_000, 2_000]
    assert (await db.get_latest_snapshots_before(1_500))[session.session_id].timestamp == 1_000


@pytest.mark.asyncio
async def test_trades_newest_first_with_limit(db):
    session = SessionRecord("strat_x", "ETHUSDT", "4h", 5000.0, created_at=0)
    await db.create_session(session)
    for ts in (10, 30, 20):
        await db.append_trade(TradeRecord(session.session_id, "ETHUSDT", TradeSide.SELL, 1.0, 1.0, timestamp=ts))

    assert [t.timestamp for t in await db.get_trades(session.session_id)] == [30, 20, 10]
    assert [t.timestamp for t in await db.get_trades(session.session_id, limit=2)] == [30, 20]


@pytest.mark.asyncio
async def test_stop_all_sessions(db):
    for capital in (100.0, 200.0):
        await db.create_session(SessionRecord("strat_x", "BTCUSDT", "1m", capital))
    assert await db.stop_all_sessions(stopped_at=99) == 2
    sessions = await db.list_sessions()
    assert {s.status for s in sessions} == {SessionStatus.STOPPED}
    assert await db.stop_all_sessions(stopped_at=100) == 0


@pytest.mark.asyncio
async def test_portfolio_cache_is_append_only(db):
    await db.append_portfolio_points([PortfolioPoint(60_000, 100.0), PortfolioPoint(120_000, 110.0)])
    await db.append_portfolio_points([PortfolioPoint(120_000, 999.0)])

    history = await db.get_portfolio_history()
    assert [(p.timestamp, p.total_equity) for p in history] == [(60_000, 100.0), (120_000, 110.0)]
    assert await db.get_last_portfolio_timestamp() == 120_000
    assert [p.timestamp for p in await db.get_portfolio_history(since_ms=100_000)] == [120_000]


@pytest.mark.asyncio
async def test_transient_write_failure_is_retried(db, monkeypatch):
    session = SessionRecord("strat_x", "BTCUSDT", "1m", 100.0)
    await db.create_session(session)

    original = db._insert_trade
    failures = {"left": 1}

    async def flaky(conn, trade):
        if failures["left"]:
            failures["left"] -= 1
            raise sqlite3.OperationalError("database is locked")
        await original(conn, trade)

    monkeypatch.setattr(db, "_insert_trade", flaky)
    trade = TradeRecord(session.session_id, "BTCUSDT", TradeSide.BUY, 1.0, 1.0, timestamp=5)
    await db.append_trade(trade)
    assert [t.trade_id for t in await db.get_trades(session.session_id)] == [trade.trade_id]


@pytest.mark.asyncio
async def test_persistent_write_failure_raises(db, monkeypatch):
    async def broken(conn, trade):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(db, "_insert_trade", broken)
    with pytest.raises(PersistenceError) as excinfo:
        await db.append_trade(TradeRecord("sess_x", "BTCUSDT", TradeSide.BUY, 1.0, 1.0, timestamp=5))
    assert excinfo.value.error_code == "PERSISTENCE_ERROR"


@pytest.mark.asyncio
async def test_unconnected_database_raises():
    manager = DatabaseManager(":memory:")
    with pytest.raises(PersistenceError):
        await manager.get_strategy("strat_x")


@pytest.mark.asyncio
async def test_stopped_session_is_never_reopened(db):
    session = SessionRecord("strat_x", "ETHUSDT", "4h", 5000.0, created_at=1_000)
    await db.create_session(session)
    assert await db.stop_all_sessions(3_000) == 1

    stale = replace(session, current_equity=5500.0, last_update=4_000)
    trade = TradeRecord(session.session_id, "ETHUSDT", TradeSide.SELL, 2100.0, 2.5, timestamp=4_000)
    saved = await db.save_session_state(stale, [trade], EquitySnapshot(session.session_id, 5500.0, 4_000))

    assert saved is False
    stored = await db.get_session(session.session_id)
    assert stored.status is SessionStatus.STOPPED
    assert stored.stopped_at == 3_000
    assert stored.current_equity == 5000.0
    assert await db.get_trades(session.session_id) == []
    assert [s.timestamp for s in await db.get_equity_curve(session.session_id)] == [1_000]

    # a stop written over a stop keeps the first stop time
    again = replace(session, status=SessionStatus.STOPPED, stopped_at=5_000, last_update=5_000)
    assert await db.save_session_state(again) is True
    assert (await db.get_session(session.session_id)).stopped_at == 3_000
