"""
Portfolio rollup.

Materializes total portfolio equity at fixed one-minute steps from the
per-session equity snapshots into the append-only ``portfolio_cache``
table, and serves bucketed history from it.
"""

import asyncio
import logging
from typing import Dict, List, Optional

import pandas as pd

from ..database.db_manager import DatabaseManager
from ..database.models import PortfolioPoint, SessionRecord
from ..exceptions import StratLabError, ValidationError
from ..utils.helpers import now_ms

logger = logging.getLogger(__name__)

STEP_MS = 60_000
DAY_MS = 24 * 60 * 60_000

# History bucket -> pandas resample rule
HISTORY_INTERVALS = {
    '3m': '3min',
    '15m': '15min',
    '1h': '1h',
    '1d': '1D',
}


def session_active_at(session: SessionRecord, timestamp_ms: int) -> bool:
    """True while ``session`` counts toward the portfolio at ``timestamp_ms``."""
    if session.created_at > timestamp_ms:
        return False
    return session.stopped_at is None or timestamp_ms < session.stopped_at


def resample_history(points: List[PortfolioPoint], interval: str) -> List[PortfolioPoint]:
    """
    Bucket a portfolio series, keeping the last value in each bucket.

    Buckets are labelled by their start time.
    """
    rule = HISTORY_INTERVALS.get(interval)
    if rule is None:
        raise ValidationError(
            f"interval must be one of {', '.join(HISTORY_INTERVALS)}", field_name="interval"
        )
    if not points:
        return []

    series = pd.Series(
        [p.total_equity for p in points],
        index=pd.to_datetime([p.timestamp for p in points], unit='ms', utc=True),
    )
    bucketed = series.resample(rule).last().dropna()
    return [
        PortfolioPoint(timestamp=int(ts.value // 1_000_000), total_equity=float(value))
        for ts, value in bucketed.items()
    ]


class PortfolioRollup:
    """
    Maintains the ``portfolio_cache`` series.

    At step t a session contributes its latest snapshot at or before t
    while it is active at t. Steps with no contributing session are not
    written. Only steps after the last cached one are ever inserted.
    """

    def __init__(self, db: DatabaseManager, step_ms: int = STEP_MS, clock=now_ms):
        self.db = db
        self.step_ms = step_ms
        self._clock = clock
        self._cursor: Optional[int] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> int:
        """
        Append rollup points up to the current step.

        Returns:
            Number of points written
        """
        async with self._lock:
            return await self._refresh()

    async def _refresh(self) -> int:
        step = self.step_ms
        end = self._clock() // step * step

        last = await self.db.get_last_portfolio_timestamp()
        if last is not None:
            start = last + step
        else:
            first = await self.db.get_first_snapshot_time()
            if first is None:
                return 0
            start = first // step * step
        if self._cursor is not None:
            start = max(start, self._cursor)
        if start > end:
            return 0

        sessions = {s.session_id: s for s in await self.db.list_sessions()}
        current: Dict[str, float] = {
            sid: snap.equity for sid, snap in (await self.db.get_latest_snapshots_before(start - 1)).items()
        }
        snapshots = await self.db.get_snapshots_between(start, end)

        points = []
        idx = 0
        t = start
        while t <= end:
            while idx < len(snapshots) and snapshots[idx].timestamp <= t:
                current[snapshots[idx].session_id] = snapshots[idx].equity
                idx += 1

            total = 0.0
            contributing = 0
            for session_id, equity in current.items():
                session = sessions.get(session_id)
                if session is not None and session_active_at(session, t):
                    total += equity
                    contributing += 1
            if contributing:
                points.append(PortfolioPoint(timestamp=t, total_equity=total))
            t += step

        written = await self.db.append_portfolio_points(points)
        self._cursor = end + step
        if written:
            logger.info(f"Portfolio cache updated with {written} point(s)")
        return written

    async def history(
        self,
        range_days: int = 7,
        interval: str = "15m",
        refresh: bool = True
    ) -> List[PortfolioPoint]:
        """
        Portfolio equity for the last ``range_days``, bucketed to ``interval``.

        Args:
            range_days: Look-back window in days
            interval: One of 3m, 15m, 1h, 1d
            refresh: Bring the cache up to date first
        """
        if range_days <= 0:
            raise ValidationError("range_days must be positive", field_name="range_days")
        if interval not in HISTORY_INTERVALS:
            raise ValidationError(
                f"interval must be one of {', '.join(HISTORY_INTERVALS)}", field_name="interval"
            )
        if refresh:
            await self.refresh()
        since = self._clock() - range_days * DAY_MS
        points = await self.db.get_portfolio_history(since_ms=since)
        return resample_history(points, interval)

    # ==================== BACKGROUND TASK ====================

    async def run_forever(self, interval_seconds: float = 60.0) -> None:
        """Refresh on a fixed period until cancelled."""
        logger.info(f"Portfolio rollup started, refreshing every {interval_seconds}s")
        while True:
            try:
                await self.refresh()
            except StratLabError as e:
                logger.error(f"Portfolio cache update failed: {e}")
            await asyncio.sleep(interval_seconds)

    def start(self, interval_seconds: float = 60.0) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(interval_seconds))
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
