"""
Session manager.

Owns the registry of live paper-trading sessions and their lifecycle:
single and Kelly-allocated bulk deployment, stop, listing and reset.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..config.config_manager import ExecutionMode, PaperTradingSettings
from ..database.db_manager import DatabaseManager
from ..database.models import SessionRecord, SessionStatus, StrategyRecord
from ..exceptions import (
    BatchResult,
    NotFoundError,
    StratLabError,
    ValidationError,
)
from ..market.candles import Candle, interval_to_ms
from ..market.provider import MarketDataProvider
from ..market.rate_limiter import FetchGate
from ..paper.session import PaperTradingSession
from ..strategies.registry import build_strategy
from ..utils.helpers import now_ms
from ..utils.logger import get_logger
from .allocation import compute_allocations

logger = logging.getLogger(__name__)
system_logger = get_logger('stratlab.portfolio.sessions')

Subscription = Tuple[str, str]


class SessionRegistry:
    """
    Live sessions keyed by id.

    The only place running sessions are held; everything that needs a
    live session goes through this API.
    """

    def __init__(self):
        self._sessions: Dict[str, PaperTradingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: PaperTradingSession) -> None:
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} already registered")
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[PaperTradingSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[PaperTradingSession]:
        return self._sessions.pop(session_id, None)

    def all(self) -> List[PaperTradingSession]:
        return list(self._sessions.values())

    def for_stream(self, symbol: str, interval: str) -> List[PaperTradingSession]:
        """Active sessions trading ``symbol`` on ``interval``."""
        symbol = symbol.upper()
        return [
            s for s in self._sessions.values()
            if s.is_active and s.symbol == symbol and s.interval == interval
        ]

    def subscriptions(self) -> Set[Subscription]:
        """(symbol, interval) pairs the live stream must cover."""
        return {(s.symbol, s.interval) for s in self._sessions.values() if s.is_active}

    def clear(self) -> List[PaperTradingSession]:
        removed = list(self._sessions.values())
        self._sessions.clear()
        return removed


class SessionManager:
    """
    Paper-trading session lifecycle.

    Deployments wait while a reset is in progress, so a reset always
    finishes stopping every session before new ones start.
    """

    def __init__(
        self,
        db: DatabaseManager,
        provider: MarketDataProvider,
        gate: Optional[FetchGate] = None,
        registry: Optional[SessionRegistry] = None,
        settings: Optional[PaperTradingSettings] = None,
        clock=now_ms
    ):
        """
        Args:
            db: Datastore
            provider: Source of warm-up candles
            gate: Shared request-pacing gate
            registry: Live session registry (a fresh one when None)
            settings: Paper-trading settings
            clock: Epoch-millisecond clock
        """
        self.db = db
        self.provider = provider
        self.gate = gate or FetchGate()
        self.registry = registry or SessionRegistry()
        self.settings = settings or PaperTradingSettings()
        self._clock = clock
        self._reset_lock = asyncio.Lock()

    @property
    def resetting(self) -> bool:
        return self._reset_lock.locked()

    def subscriptions(self) -> Set[Subscription]:
        return self.registry.subscriptions()

    # ==================== DEPLOYMENT ====================

    async def start_session(
        self,
        strategy_id: str,
        initial_capital: Optional[float] = None,
        execution_mode=None
    ) -> SessionRecord:
        """
        Deploy one strategy as a new paper-trading session.

        Raises:
            NotFoundError: Unknown strategy.
            ValidationError: Non-positive capital or bad execution mode.
            DataFetchError: Warm-up history could not be fetched.
        """
        capital = self.settings.default_capital if initial_capital is None else initial_capital
        async with self._reset_lock:
            strategy = await self._load_strategy(strategy_id)
            session = await self._start(strategy, capital, execution_mode)
            return session.record

    async def start_bulk(
        self,
        strategy_ids: Sequence[str],
        total_capital: float,
        execution_mode=None
    ) -> BatchResult:
        """
        Deploy several strategies, splitting ``total_capital`` by Kelly fraction.

        Returns:
            BatchResult whose ``succeeded`` holds the new session records and
            ``failed`` one entry per strategy that did not start
        """
        if not strategy_ids:
            raise ValidationError("At least one strategy id is required", field_name="strategy_ids")
        if total_capital is None or total_capital <= 0:
            raise ValidationError("total_capital must be positive", field_name="total_capital")
        mode = self._execution_mode(execution_mode)

        result = BatchResult()
        async with self._reset_lock:
            found: List[StrategyRecord] = []
            for strategy_id in dict.fromkeys(strategy_ids):
                try:
                    found.append(await self._load_strategy(strategy_id))
                except StratLabError as e:
                    result.add_failure(strategy_id, e)

            if not found:
                return result

            plan = compute_allocations(
                [s.kelly_fraction for s in found],
                total_capital,
                self.settings.default_kelly_fraction
            )
            logger.info(
                f"Bulk deploy of {len(found)} strateg(ies): total_kelly={plan.total_kelly:.4f}, "
                f"leverage_ratio={plan.leverage_ratio:.4f}"
            )

            outcomes = await asyncio.gather(
                *(
                    self._start(strategy, allocation, mode, weight)
                    for strategy, allocation, weight in zip(found, plan.allocations, plan.weights)
                ),
                return_exceptions=True
            )
            for strategy, outcome in zip(found, outcomes):
                if isinstance(outcome, StratLabError):
                    result.add_failure(strategy.strategy_id, outcome)
                elif isinstance(outcome, Exception):
                    logger.error(
                        f"Unexpected error starting strategy {strategy.strategy_id}: {outcome}",
                        exc_info=outcome
                    )
                    result.add_failure(strategy.strategy_id, outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.succeeded.append(outcome.record.to_dict())

        system_logger.log_system_event(
            {'event_type': 'bulk_deploy', 'started': result.success_count, 'failed': len(result.failed)},
            msg=f"Bulk deploy: {result.success_count} started, {len(result.failed)} failed"
        )
        return result

    async def _load_strategy(self, strategy_id: str) -> StrategyRecord:
        strategy = await self.db.get_strategy(strategy_id)
        if strategy is None:
            raise NotFoundError(f"Strategy {strategy_id} not found", entity="strategy", entity_id=strategy_id)
        return strategy

    def _execution_mode(self, execution_mode) -> ExecutionMode:
        if execution_mode is None:
            return self.settings.execution_mode
        try:
            return ExecutionMode(execution_mode)
        except ValueError:
            raise ValidationError(
                f"execution_mode must be 'sync' or 'edge', got {execution_mode!r}",
                field_name="execution_mode"
            ) from None

    async def _warmup(self, symbol: str, interval: str) -> List[Candle]:
        candles = await self.gate.run(self.provider.fetch, symbol, interval, self.settings.warmup_candles)
        # The newest bar is usually still forming
        if candles and candles[-1].timestamp + interval_to_ms(interval) > self._clock():
            candles = candles[:-1]
        return candles

    async def _start(
        self,
        strategy_record: StrategyRecord,
        initial_capital: float,
        execution_mode=None,
        allocated_weight: Optional[float] = None
    ) -> PaperTradingSession:
        if initial_capital is None or initial_capital <= 0:
            raise ValidationError(
                f"initial_capital must be positive, got {initial_capital}", field_name="initial_capital"
            )
        mode = self._execution_mode(execution_mode)
        try:
            strategy = build_strategy(strategy_record.strategy_type, strategy_record.parameters)
        except ValueError as e:
            raise ValidationError(str(e), field_name="parameters") from None

        history = await self._warmup(strategy_record.symbol, strategy_record.interval)

        record = SessionRecord(
            strategy_id=strategy_record.strategy_id,
            symbol=strategy_record.symbol,
            interval=strategy_record.interval,
            initial_capital=initial_capital,
            execution_mode=mode,
            allocated_weight=allocated_weight,
            created_at=self._clock(),
        )
        await self.db.create_session(record)

        session = PaperTradingSession(
            record,
            strategy,
            self.db,
            history=history,
            window_size=self.settings.window_size,
            position_fraction=self.settings.position_fraction,
            snapshot_cooldown_ms=self.settings.snapshot_cooldown_ms,
            reverse_on_signal=self.settings.reverse_on_signal,
            clock=self._clock,
        )
        self.registry.add(session)
        logger.info(
            f"Started session {record.session_id} for {strategy_record.name} "
            f"with {initial_capital:.2f} ({mode.value})"
        )
        return session

    async def restore_sessions(self) -> BatchResult:
        """
        Re-register sessions left active by a previous process.

        Sessions whose strategy no longer exists are stopped.

        Returns:
            BatchResult with restored session ids and per-session failures
        """
        result = BatchResult()
        async with self._reset_lock:
            for record in await self.db.list_sessions(status=SessionStatus.ACTIVE):
                if record.session_id in self.registry:
                    continue
                try:
                    strategy_record = await self.db.get_strategy(record.strategy_id)
                    if strategy_record is None:
                        await self.stop_session(record.session_id)
                        raise NotFoundError(
                            f"Strategy {record.strategy_id} no longer exists; session stopped",
                            entity="strategy",
                            entity_id=record.strategy_id
                        )
                    strategy = build_strategy(strategy_record.strategy_type, strategy_record.parameters)
                    history = await self._warmup(record.symbol, record.interval)
                except (StratLabError, ValueError) as e:
                    result.add_failure(record.session_id, e)
                    continue

                self.registry.add(PaperTradingSession(
                    record,
                    strategy,
                    self.db,
                    history=history,
                    window_size=self.settings.window_size,
                    position_fraction=self.settings.position_fraction,
                    snapshot_cooldown_ms=self.settings.snapshot_cooldown_ms,
                    reverse_on_signal=self.settings.reverse_on_signal,
                    clock=self._clock,
                ))
                result.succeeded.append(record.session_id)

        if result.succeeded:
            logger.info(f"Recovered {result.success_count} session(s) from previous run")
        for failure in result.failed:
            logger.warning(f"Could not recover session {failure.item}: {failure.message}")
        return result

    # ==================== STOP / RESET ====================

    async def stop_session(self, session_id: str) -> SessionRecord:
        """
        Stop one session. Terminal.

        Raises:
            NotFoundError: Unknown session id.
        """
        session = self.registry.get(session_id)
        if session is not None:
            record = await session.stop()
            self.registry.remove(session_id)
            return record

        record = await self.db.get_session(session_id)
        if record is None:
            raise NotFoundError(f"Session {session_id} not found", entity="session", entity_id=session_id)
        if record.is_active:
            ts = max(self._clock(), record.last_update or 0)
            record.status = SessionStatus.STOPPED
            record.stopped_at = ts
            record.last_update = ts
            await self.db.save_session_state(record)
        return record

    async def stop_sessions_for_strategy(self, strategy_id: str) -> int:
        """Stop every active session deployed from ``strategy_id``."""
        active = await self.db.list_sessions(status=SessionStatus.ACTIVE, strategy_id=strategy_id)
        for record in active:
            await self.stop_session(record.session_id)
        return len(active)

    async def reset_all(self) -> int:
        """
        Stop every active session and clear the registry.

        In-flight ticks finish first; new deployments wait until this returns.

        Returns:
            Number of sessions stopped
        """
        async with self._reset_lock:
            sessions = self.registry.all()
            results = await asyncio.gather(*(s.stop() for s in sessions), return_exceptions=True)
            failures = [r for r in results if isinstance(r, BaseException)]
            for failure in failures:
                logger.error(f"Failed to stop session during reset: {failure}")

            # Sessions not held in memory (e.g. from an earlier process) too
            stragglers = await self.db.stop_all_sessions(self._clock())
            self.registry.clear()

            if failures:
                raise failures[0]

            stopped = len(sessions) + stragglers
            system_logger.log_system_event(
                {'event_type': 'reset', 'stopped': stopped},
                msg=f"Reset stopped {stopped} session(s)"
            )
            return stopped

    # ==================== QUERIES ====================

    async def list_sessions(self, status=None) -> List[SessionRecord]:
        """All sessions, newest first; live sessions report in-memory state."""
        records = await self.db.list_sessions(status=status)
        return [self._freshest(r) for r in records]

    async def get_session(self, session_id: str) -> SessionRecord:
        live = self.registry.get(session_id)
        if live is not None:
            return live.record
        record = await self.db.get_session(session_id)
        if record is None:
            raise NotFoundError(f"Session {session_id} not found", entity="session", entity_id=session_id)
        return record

    def get_live_session(self, session_id: str) -> PaperTradingSession:
        session = self.registry.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} is not running", entity="session", entity_id=session_id)
        return session

    def _freshest(self, record: SessionRecord) -> SessionRecord:
        # A stored stop wins over a live session that has not noticed it yet
        if not record.is_active:
            return record
        live = self.registry.get(record.session_id)
        return live.record if live is not None else record

    def active_records(self) -> Iterable[SessionRecord]:
        return [s.record for s in self.registry.all() if s.is_active]
