import sqlite3

import pytest

from stratlab.config.config_manager import ExecutionMode
from stratlab.database.models import SessionRecord, TradeSide
from stratlab.exceptions import PersistenceError
from stratlab.paper import PaperTradingSession, PositionState
from stratlab.strategies import MaCrossover, Signal, SignalDecision

from conftest import HOUR_MS, make_candles

BUY = SignalDecision(Signal.BUY, "test buy")
SELL = SignalDecision(Signal.SELL, "test sell")


async def _session(db, clock, mode=ExecutionMode.SYNC, history=None, **kwargs):
    record = SessionRecord(
        strategy_id="strat_test",
        symbol="BTCUSDT",
        interval="1h",
        initial_capital=10000.0,
        execution_mode=mode,
        created_at=clock(),
    )
    await db.create_session(record)
    return PaperTradingSession(
        record,
        MaCrossover(fast_period=3, slow_period=8),
        db,
        history=history,
        clock=clock,
        **kwargs
    )


@pytest.mark.asyncio
async def test_long_round_trip_realizes_pnl(db, clock):
    session = await _session(db, clock)

    opened = await session.apply_signal(BUY, price=100.0, quantity=10)
    assert [t.side for t in opened] == [TradeSide.BUY]
    assert session.position_state is PositionState.LONG
    assert session.record.current_position == 10
    assert session.record.entry_price == 100.0

    clock.advance(HOUR_MS)
    closed = await session.apply_signal(SELL, price=110.0)
    assert [t.side for t in closed] == [TradeSide.SELL]
    assert closed[0].pnl == pytest.approx(100.0)

    record = session.record
    assert record.current_equity == pytest.approx(10100.0)
    assert record.current_position == 0
    assert record.entry_price is None
    assert session.position_state is PositionState.FLAT

    stored = await db.get_session(session.session_id)
    assert stored.current_equity == pytest.approx(10100.0)
    trades = await db.get_trades(session.session_id)
    assert {t.side for t in trades} == {TradeSide.BUY, TradeSide.SELL}


@pytest.mark.asyncio
async def test_unchanged_price_gives_zero_pnl(db, clock):
    session = await _session(db, clock)
    await session.apply_signal(BUY, price=100.0, quantity=5)
    trades = await session.apply_signal(SELL, price=100.0)
    assert trades[0].pnl == 0
    assert session.record.current_equity == 10000.0


@pytest.mark.asyncio
async def test_short_profits_when_price_falls(db, clock):
    session = await _session(db, clock)
    await session.apply_signal(SELL, price=100.0, quantity=10)
    assert session.position_state is PositionState.SHORT
    assert session.record.current_position == -10

    trades = await session.apply_signal(BUY, price=90.0)
    assert trades[0].side is TradeSide.BUY
    assert trades[0].pnl == pytest.approx(100.0)
    assert session.record.current_equity == pytest.approx(10100.0)


@pytest.mark.asyncio
async def test_same_direction_signal_does_not_trade(db, clock):
    session = await _session(db, clock)
    await session.apply_signal(BUY, price=100.0, quantity=10)
    assert await session.apply_signal(BUY, price=105.0) == []
    assert session.record.current_position == 10


@pytest.mark.asyncio
async def test_reverse_on_signal_opens_opposite(db, clock):
    session = await _session(db, clock, reverse_on_signal=True)
    await session.apply_signal(BUY, price=100.0, quantity=10)
    trades = await session.apply_signal(SELL, price=110.0)

    assert [t.side for t in trades] == [TradeSide.SELL, TradeSide.SELL]
    assert trades[0].pnl == pytest.approx(100.0)
    assert trades[1].pnl is None
    assert session.position_state is PositionState.SHORT
    assert session.record.current_position == pytest.approx(-10100.0 / 110.0)
    assert session.record.entry_equity == pytest.approx(10100.0)


@pytest.mark.asyncio
async def test_forming_candle_marks_to_market(db, clock):
    session = await _session(db, clock)
    await session.apply_signal(BUY, price=100.0, quantity=10)

    clock.advance(5000)
    forming = make_candles([105.0], start=clock())[0]
    assert await session.on_candle(forming, is_final=False) == []
    assert session.record.current_equity == pytest.approx(10050.0)
    assert session.candles[-1] == forming

    curve = await db.get_equity_curve(session.session_id)
    assert curve[-1].equity == pytest.approx(10050.0)


@pytest.mark.asyncio
async def test_sync_mode_enters_on_signal(db, clock):
    rising = make_candles([100.0 + i for i in range(30)])
    session = await _session(db, clock, history=rising[:-1])

    trades = await session.on_candle(rising[-1])
    assert len(trades) == 1
    assert trades[0].side is TradeSide.BUY
    assert trades[0].price == rising[-1].close

    # A repeated BUY on the next bar holds the position
    nxt = make_candles([130.0], start=rising[-1].timestamp + HOUR_MS)[0]
    assert await session.on_candle(nxt) == []


@pytest.mark.asyncio
async def test_edge_mode_ignores_unchanged_signal(db, clock):
    rising = make_candles([100.0 + i for i in range(30)])
    session = await _session(db, clock, mode=ExecutionMode.EDGE, history=rising[:-1])

    assert await session.on_candle(rising[-1]) == []
    assert session.position_state is PositionState.FLAT


@pytest.mark.asyncio
async def test_edge_mode_acts_on_signal_change(db, clock):
    closes = [100.0 + i for i in range(30)] + [129.0 - 4 * i for i in range(1, 12)]
    candles = make_candles(closes)
    session = await _session(db, clock, mode=ExecutionMode.EDGE, history=candles[:30])

    sides = []
    for candle in candles[30:]:
        sides.extend(t.side for t in await session.on_candle(candle))
    assert sides == [TradeSide.SELL]
    assert session.position_state is PositionState.SHORT


@pytest.mark.asyncio
async def test_window_is_trimmed_and_updates_replace(db, clock):
    candles = make_candles([100.0 + i for i in range(12)])
    session = await _session(db, clock, history=candles[:10], window_size=10)
    await session.on_candle(candles[10])
    assert len(session.candles) == 10
    assert session.candles[-1] == candles[10]

    revised = make_candles([99.0], start=candles[10].timestamp)[0]
    await session.on_candle(revised)
    assert session.candles[-1] == revised
    assert len(session.candles) == 10


@pytest.mark.asyncio
async def test_stopped_session_ignores_ticks(db, clock):
    session = await _session(db, clock)
    clock.advance(1000)
    record = await session.stop()
    assert record.stopped_at == clock()
    assert not session.is_active

    assert await session.apply_signal(BUY, price=100.0) == []
    assert await session.on_candle(make_candles([100.0])[0]) == []
    assert (await db.get_session(session.session_id)).stopped_at == clock()


@pytest.mark.asyncio
async def test_failed_write_keeps_previous_state(db, clock, monkeypatch):
    session = await _session(db, clock)

    async def broken(conn, trade):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(db, "_insert_trade", broken)
    with pytest.raises(PersistenceError):
        await session.apply_signal(BUY, price=100.0, quantity=10)

    assert session.position_state is PositionState.FLAT
    assert session.record.current_equity == 10000.0
    assert await db.get_trades(session.session_id) == []


@pytest.mark.asyncio
async def test_edge_mode_retries_signal_after_failed_write(db, clock, monkeypatch):
    closes = [100.0 + i for i in range(30)] + [129.0 - 4 * i for i in range(1, 12)]
    candles = make_candles(closes)
    session = await _session(db, clock, mode=ExecutionMode.EDGE, history=candles[:30])

    insert_trade = db._insert_trade
    lock = {"held": True, "failed_ticks": 0}

    async def locked_insert(conn, trade):
        if lock["held"]:
            raise sqlite3.OperationalError("database is locked")
        await insert_trade(conn, trade)

    monkeypatch.setattr(db, "_insert_trade", locked_insert)

    sides = []
    for candle in candles[30:]:
        try:
            sides.extend(t.side for t in await session.on_candle(candle))
        except PersistenceError:
            assert session.position_state is PositionState.FLAT
            lock["held"] = False
            lock["failed_ticks"] += 1

    assert lock["failed_ticks"] == 1
    assert sides == [TradeSide.SELL]
    assert session.position_state is PositionState.SHORT
    assert [t.side for t in await db.get_trades(session.session_id)] == [TradeSide.SELL]
