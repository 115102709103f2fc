"""
Database Manager for Strategy Lab.

This module provides the DatabaseManager class for the SQLite datastore
(via aiosqlite): the strategy repository, session state, the append-only
trade ledger, equity snapshots and the portfolio cache.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiosqlite

from ..exceptions import PersistenceError
from ..utils.helpers import to_json, retry_async
from .models import (
    StrategyRecord,
    SessionRecord,
    SessionStatus,
    TradeRecord,
    EquitySnapshot,
    PortfolioPoint,
)

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages the SQLite datastore.

    Provides methods for:
    - Schema creation from ``schema.sql``
    - Strategy repository (save, list, delete)
    - Session state
    - Trade ledger and equity snapshots (writes retried with backoff)
    - Portfolio cache reads and appends

    Writes are serialized through one connection; a transaction either
    commits completely or rolls back.
    """

    def __init__(
        self,
        db_path: str = "data/stratlab.db",
        write_retries: int = 5,
        retry_delay_base: float = 0.2,
        retry_delay_max: float = 5.0
    ):
        """
        Args:
            db_path: Path to the SQLite database file (``:memory:`` allowed)
            write_retries: Retries for trade and snapshot writes
            retry_delay_base: Base backoff delay in seconds
            retry_delay_max: Maximum backoff delay in seconds
        """
        self.db_path = db_path
        self.write_retries = write_retries
        self.retry_delay_base = retry_delay_base
        self.retry_delay_max = retry_delay_max
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> 'DatabaseManager':
        """Build from ``DatabaseSettings``."""
        return cls(
            db_path=settings.db_path,
            write_retries=settings.write_retries,
            retry_delay_base=settings.retry_delay_base,
            retry_delay_max=settings.retry_delay_max,
        )

    async def connect(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._conn is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        schema_path = Path(__file__).parent / "schema.sql"
        if not schema_path.exists():
            raise PersistenceError(f"Schema file not found: {schema_path}", operation="connect")

        try:
            conn = await aiosqlite.connect(self.db_path)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                await conn.execute("PRAGMA journal_mode = WAL")
            await conn.executescript(schema_path.read_text(encoding='utf-8'))
            await conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Database initialization failed: {e}",
                operation="connect"
            ) from e

        self._conn = conn
        logger.info(f"Database initialized at {self.db_path}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> 'DatabaseManager':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Database is not connected", operation="connect")
        return self._conn

    @asynccontextmanager
    async def _transaction(self):
        """Serialized write transaction; rolls back on any error."""
        conn = self._require_connection()
        async with self._write_lock:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    async def _write(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args,
        critical: bool = False
    ) -> Any:
        """
        Run a write, retrying transient failures when ``critical``.

        Raises:
            PersistenceError: The write failed (after retries when critical).
        """
        retries = self.write_retries if critical else 0
        try:
            return await retry_async(
                func,
                *args,
                retries=retries,
                base_delay=self.retry_delay_base,
                max_delay=self.retry_delay_max,
                retry_on=(sqlite3.Error,),
                operation=operation,
            )
        except sqlite3.Error as e:
            logger.error(f"Database write '{operation}' failed after {retries + 1} attempt(s): {e}")
            raise PersistenceError(
                f"Database operation '{operation}' failed: {e}",
                operation=operation,
                attempts=retries + 1
            ) from e

    async def _fetchall(self, query: str, params: Sequence = ()) -> List[Dict[str, Any]]:
        conn = self._require_connection()
        try:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Database query failed: {e}", operation="query") from e
        return [dict(row) for row in rows]

    async def _fetchone(self, query: str, params: Sequence = ()) -> Optional[Dict[str, Any]]:
        rows = await self._fetchall(query, params)
        return rows[0] if rows else None

    # =========================================================================
    # STRATEGY OPERATIONS
    # =========================================================================

    async def save_strategies(self, strategies: Sequence[StrategyRecord]) -> int:
        """
        Insert strategies in one transaction.

        Returns:
            Number of strategies written
        """
        if not strategies:
            return 0
        rows = [self._strategy_row(s) for s in strategies]

        async def _insert():
            async with self._transaction() as conn:
                await conn.executemany("""
                    INSERT INTO strategies (
                        strategy_id, name, strategy_type, symbol, interval, parameters,
                        performance_metrics, backtest_curve, kelly_fraction, created_at
                    ) VALUES (
                        :strategy_id, :name, :strategy_type, :symbol, :interval, :parameters,
                        :performance_metrics, :backtest_curve, :kelly_fraction, :created_at
                    )
                """, rows)

        await self._write("save_strategies", _insert)
        logger.debug(f"Saved {len(rows)} strategies")
        return len(rows)

    async def save_strategy(self, strategy: StrategyRecord) -> str:
        await self.save_strategies([strategy])
        return strategy.strategy_id

    @staticmethod
    def _strategy_row(strategy: StrategyRecord) -> Dict[str, Any]:
        data = strategy.to_dict()
        data['parameters'] = to_json(data['parameters'])
        data['performance_metrics'] = to_json(data['performance_metrics'])
        data['backtest_curve'] = to_json(data['backtest_curve'])
        return data

    async def get_strategy(self, strategy_id: str) -> Optional[StrategyRecord]:
        row = await self._fetchone("SELECT * FROM strategies WHERE strategy_id = ?", (strategy_id,))
        return StrategyRecord.from_dict(row) if row else None

    async def list_strategies(
        self,
        symbol: Optional[str] = None,
        interval: Optional[str] = None
    ) -> List[StrategyRecord]:
        """List strategies, newest first."""
        query = "SELECT * FROM strategies WHERE 1=1"
        params: List[Any] = []
        if symbol:
            query += " AND symbol = ?"
            params.append(symbol)
        if interval:
            query += " AND interval = ?"
            params.append(interval)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [StrategyRecord.from_dict(r) for r in await self._fetchall(query, params)]

    async def delete_strategy(self, strategy_id: str) -> bool:
        async def _delete():
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    "DELETE FROM strategies WHERE strategy_id = ?", (strategy_id,)
                )
                return cursor.rowcount > 0

        return await self._write("delete_strategy", _delete)

    async def delete_all_strategies(self) -> int:
        async def _delete():
            async with self._transaction() as conn:
                cursor = await conn.execute("DELETE FROM strategies")
                return cursor.rowcount

        return await self._write("delete_all_strategies", _delete)

    # =========================================================================
    # SESSION OPERATIONS
    # =========================================================================

    async def create_session(self, session: SessionRecord) -> str:
        """Insert a session together with its initial equity snapshot."""
        async def _insert():
            async with self._transaction() as conn:
                await self._upsert_session(conn, session)
                await self._insert_snapshot(
                    conn, EquitySnapshot(session.session_id, session.current_equity, session.created_at)
                )

        await self._write("create_session", _insert, critical=True)
        return session.session_id

    async def save_session_state(
        self,
        session: SessionRecord,
        trades: Sequence[TradeRecord] = (),
        snapshot: Optional[EquitySnapshot] = None
    ) -> bool:
        """
        Persist session state plus any new trades and snapshot atomically.

        A stopped row is never reopened: writing an active record over a
        session stopped elsewhere (another process, a reset) writes nothing.

        Retried with backoff; raises PersistenceError once retries run out.

        Returns:
            False when the stored session was already stopped and the write
            was refused, True otherwise
        """
        async def _persist():
            async with self._transaction() as conn:
                if session.is_active:
                    async with conn.execute(
                        "SELECT status FROM sessions WHERE session_id = ?", (session.session_id,)
                    ) as cursor:
                        row = await cursor.fetchone()
                    if row is not None and row[0] == SessionStatus.STOPPED.value:
                        return False
                await self._upsert_session(conn, session)
                for trade in trades:
                    await self._insert_trade(conn, trade)
                if snapshot is not None:
                    await self._insert_snapshot(conn, snapshot)
                return True

        return await self._write("save_session_state", _persist, critical=True)

    async def _upsert_session(self, conn: aiosqlite.Connection, session: SessionRecord) -> None:
        await conn.execute("""
            INSERT INTO sessions (
                session_id, strategy_id, symbol, interval, initial_capital, entry_equity,
                current_equity, current_position, entry_price, status, execution_mode,
                allocated_weight, created_at, last_update, stopped_at
            ) VALUES (
                :session_id, :strategy_id, :symbol, :interval, :initial_capital, :entry_equity,
                :current_equity, :current_position, :entry_price, :status, :execution_mode,
                :allocated_weight, :created_at, :last_update, :stopped_at
            )
            ON CONFLICT(session_id) DO UPDATE SET
                entry_equity = excluded.entry_equity,
                current_equity = excluded.current_equity,
                current_position = excluded.current_position,
                entry_price = excluded.entry_price,
                status = excluded.status,
                last_update = excluded.last_update,
                stopped_at = excluded.stopped_at
            WHERE sessions.status = 'active'
        """, session.to_dict())

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        row = await self._fetchone("SELECT * FROM sessions WHERE session_id = ?", (session_id,))
        return SessionRecord.from_dict(row) if row else None

    async def list_sessions(
        self,
        status: Optional[SessionStatus] = None,
        strategy_id: Optional[str] = None
    ) -> List[SessionRecord]:
        """List sessions, newest first."""
        query = "SELECT * FROM sessions WHERE 1=1"
        params: List[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(SessionStatus(status).value)
        if strategy_id:
            query += " AND strategy_id = ?"
            params.append(strategy_id)
        query += " ORDER BY created_at DESC, rowid DESC"
        return [SessionRecord.from_dict(r) for r in await self._fetchall(query, params)]

    async def stop_all_sessions(self, stopped_at: int) -> int:
        """Mark every active session stopped (sessions no longer held in memory included)."""
        async def _stop():
            async with self._transaction() as conn:
                cursor = await conn.execute("""
                    UPDATE sessions SET status = 'stopped', stopped_at = ?, last_update = ?
                    WHERE status = 'active'
                """, (stopped_at, stopped_at))
                return cursor.rowcount

        return await self._write("stop_all_sessions", _stop, critical=True)

    # =========================================================================
    # TRADE LEDGER
    # =========================================================================

    async def _insert_trade(self, conn: aiosqlite.Connection, trade: TradeRecord) -> None:
        await conn.execute("""
            INSERT INTO trades (
                trade_id, session_id, symbol, side, price, quantity, pnl, reason, timestamp
            ) VALUES (
                :trade_id, :session_id, :symbol, :side, :price, :quantity, :pnl, :reason, :timestamp
            )
        """, trade.to_dict())

    async def append_trade(self, trade: TradeRecord) -> str:
        async def _append():
            async with self._transaction() as conn:
                await self._insert_trade(conn, trade)

        await self._write("append_trade", _append, critical=True)
        return trade.trade_id

    async def get_trades(self, session_id: str, limit: Optional[int] = None) -> List[TradeRecord]:
        """Trades of a session, newest first."""
        query = "SELECT * FROM trades WHERE session_id = ? ORDER BY timestamp DESC, rowid DESC"
        params: List[Any] = [session_id]
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        return [TradeRecord.from_dict(r) for r in await self._fetchall(query, params)]

    # =========================================================================
    # EQUITY SNAPSHOTS
    # =========================================================================

    async def _insert_snapshot(self, conn: aiosqlite.Connection, snapshot: EquitySnapshot) -> None:
        await conn.execute(
            "INSERT INTO equity_snapshots (session_id, equity, timestamp) VALUES (?, ?, ?)",
            (snapshot.session_id, snapshot.equity, snapshot.timestamp)
        )

    async def append_snapshot(self, snapshot: EquitySnapshot) -> None:
        async def _append():
            async with self._transaction() as conn:
                await self._insert_snapshot(conn, snapshot)

        await self._write("append_snapshot", _append, critical=True)

    async def get_equity_curve(self, session_id: str) -> List[EquitySnapshot]:
        """Snapshots of a session, oldest first."""
        rows = await self._fetchall(
            "SELECT session_id, equity, timestamp FROM equity_snapshots "
            "WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,)
        )
        return [EquitySnapshot.from_dict(r) for r in rows]

    async def get_snapshots_between(self, start_ms: int, end_ms: int) -> List[EquitySnapshot]:
        rows = await self._fetchall(
            "SELECT session_id, equity, timestamp FROM equity_snapshots "
            "WHERE timestamp >= ? AND timestamp <= ? ORDER BY timestamp ASC, id ASC",
            (start_ms, end_ms)
        )
        return [EquitySnapshot.from_dict(r) for r in rows]

    async def get_latest_snapshots_before(self, timestamp_ms: int) -> Dict[str, EquitySnapshot]:
        """Latest snapshot at or before ``timestamp_ms`` for every session."""
        rows = await self._fetchall("""
            SELECT s.session_id, s.equity, s.timestamp
            FROM equity_snapshots s
            WHERE s.id = (
                SELECT s2.id FROM equity_snapshots s2
                WHERE s2.session_id = s.session_id AND s2.timestamp <= ?
                ORDER BY s2.timestamp DESC, s2.id DESC LIMIT 1
            )
        """, (timestamp_ms,))
        return {r['session_id']: EquitySnapshot.from_dict(r) for r in rows}

    async def get_first_snapshot_time(self) -> Optional[int]:
        row = await self._fetchone("SELECT MIN(timestamp) AS ts FROM equity_snapshots")
        return row['ts'] if row and row['ts'] is not None else None

    # =========================================================================
    # PORTFOLIO CACHE
    # =========================================================================

    async def get_last_portfolio_timestamp(self) -> Optional[int]:
        row = await self._fetchone("SELECT MAX(timestamp) AS ts FROM portfolio_cache")
        return row['ts'] if row and row['ts'] is not None else None

    async def append_portfolio_points(self, points: Sequence[PortfolioPoint]) -> int:
        """Insert new rollup points; existing timestamps are left untouched."""
        if not points:
            return 0

        async def _append():
            async with self._transaction() as conn:
                await conn.executemany(
                    "INSERT OR IGNORE INTO portfolio_cache (timestamp, total_equity) VALUES (?, ?)",
                    [(p.timestamp, p.total_equity) for p in points]
                )
            return len(points)

        return await self._write("append_portfolio_points", _append, critical=True)

    async def get_portfolio_history(self, since_ms: Optional[int] = None) -> List[PortfolioPoint]:
        """Cached portfolio series, oldest first."""
        if since_ms is None:
            rows = await self._fetchall(
                "SELECT timestamp, total_equity FROM portfolio_cache ORDER BY timestamp ASC"
            )
        else:
            rows = await self._fetchall(
                "SELECT timestamp, total_equity FROM portfolio_cache "
                "WHERE timestamp >= ? ORDER BY timestamp ASC",
                (since_ms,)
            )
        return [PortfolioPoint.from_dict(r) for r in rows]
