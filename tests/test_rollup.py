from dataclasses import replace

import pytest

from stratlab.database.models import EquitySnapshot, PortfolioPoint, SessionRecord, SessionStatus
from stratlab.exceptions import ValidationError
from stratlab.portfolio import PortfolioRollup, resample_history, session_active_at

from conftest import START_MS

MINUTE = 60_000


async def _create(db, capital, created_at=START_MS):
    record = SessionRecord(
        strategy_id="strat_x",
        symbol="BTCUSDT",
        interval="1m",
        initial_capital=capital,
        created_at=created_at,
    )
    await db.create_session(record)
    return record


@pytest.mark.asyncio
async def test_rollup_sums_active_sessions_per_minute(db, clock):
    a = await _create(db, 1000.0)
    b = await _create(db, 2000.0)
    rollup = PortfolioRollup(db, clock=clock)

    clock.now = START_MS + 2 * MINUTE
    assert await rollup.refresh() == 3
    history = await db.get_portfolio_history()
    assert [(p.timestamp - START_MS) // MINUTE for p in history] == [0, 1, 2]
    assert all(p.total_equity == 3000.0 for p in history)

    b_update = replace(b, current_equity=2500.0, last_update=START_MS + 2 * MINUTE + 10_000)
    await db.save_session_state(
        b_update, snapshot=EquitySnapshot(b.session_id, 2500.0, START_MS + 2 * MINUTE + 10_000)
    )
    a_stopped = replace(a, status=SessionStatus.STOPPED, stopped_at=START_MS + 3 * MINUTE)
    await db.save_session_state(a_stopped)

    clock.now = START_MS + 4 * MINUTE + 30_000
    assert await rollup.refresh() == 2
    history = await db.get_portfolio_history()
    assert [p.total_equity for p in history] == [3000.0, 3000.0, 3000.0, 2500.0, 2500.0]

    # nothing new within the same minute; earlier points never rewritten
    assert await rollup.refresh() == 0
    assert await db.get_portfolio_history() == history


@pytest.mark.asyncio
async def test_rollup_resumes_from_cache_in_new_instance(db, clock):
    await _create(db, 1000.0)
    clock.now = START_MS + 5 * MINUTE
    await PortfolioRollup(db, clock=clock).refresh()

    clock.now = START_MS + 7 * MINUTE
    assert await PortfolioRollup(db, clock=clock).refresh() == 2


@pytest.mark.asyncio
async def test_rollup_skips_steps_without_sessions(db, clock):
    rollup = PortfolioRollup(db, clock=clock)
    assert await rollup.refresh() == 0

    s = await _create(db, 1000.0)
    await db.save_session_state(replace(s, status=SessionStatus.STOPPED, stopped_at=START_MS + MINUTE))
    clock.now = START_MS + 3 * MINUTE
    assert await rollup.refresh() == 1
    assert [p.timestamp for p in await db.get_portfolio_history()] == [START_MS]


@pytest.mark.asyncio
async def test_history_buckets_last_value(db, clock):
    await _create(db, 1000.0)
    clock.now = START_MS + 5 * MINUTE
    rollup = PortfolioRollup(db, clock=clock)

    history = await rollup.history(range_days=1, interval="3m")
    assert [p.timestamp for p in history] == [START_MS, START_MS + 3 * MINUTE]

    with pytest.raises(ValidationError):
        await rollup.history(range_days=0)
    with pytest.raises(ValidationError):
        await rollup.history(interval="7m")


def test_resample_history_keeps_last_in_bucket():
    points = [PortfolioPoint(START_MS + i * MINUTE, 100.0 + i) for i in range(6)]
    out = resample_history(points, "3m")
    assert [(p.timestamp, p.total_equity) for p in out] == [
        (START_MS, 102.0),
        (START_MS + 3 * MINUTE, 105.0),
    ]
    assert resample_history([], "1h") == []


def test_session_active_window():
    record = SessionRecord("s", "BTCUSDT", "1m", 100.0, created_at=1000, stopped_at=5000)
    assert not session_active_at(record, 999)
    assert session_active_at(record, 1000)
    assert session_active_at(record, 4999)
    assert not session_active_at(record, 5000)
