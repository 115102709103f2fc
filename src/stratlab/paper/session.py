"""
Paper-trading session.

One session runs one strategy against live candles for one symbol and
interval, simulating fills, equity and position. A session is a
single-writer domain: every mutation happens under its ``asyncio.Lock``
and is persisted before it becomes the session's visible state.
"""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from ..config.config_manager import ExecutionMode
from ..database.db_manager import DatabaseManager
from ..database.models import (
    SessionRecord,
    SessionStatus,
    TradeRecord,
    TradeSide,
    EquitySnapshot,
)
from ..exceptions import PersistenceError
from ..market.candles import Candle, CandleWindow
from ..strategies.signals import Signal, SignalDecision
from ..utils.helpers import now_ms
from ..utils.logger import get_logger

logger = logging.getLogger(__name__)
trade_logger = get_logger('stratlab.paper.trades')


class PositionState(Enum):
    """Position state of a session."""
    FLAT = "FLAT"
    LONG = "LONG"
    SHORT = "SHORT"


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


class PaperTradingSession:
    """
    Per-session execution state machine.

    On each closed candle the strategy is evaluated over the trailing
    window. In ``sync`` mode the signal is acted on immediately; in
    ``edge`` mode only when it differs from the previous tick's signal.
    A directional signal opposite to an open position closes it; with
    ``reverse_on_signal`` the opposite position is opened on the same tick.
    Forming (non-final) candles only mark the open position to market.

    Fills happen at the close of the candle being processed.
    """

    def __init__(
        self,
        record: SessionRecord,
        strategy,
        db: DatabaseManager,
        history: Optional[Sequence[Candle]] = None,
        window_size: int = 500,
        position_fraction: float = 1.0,
        snapshot_cooldown_ms: int = 1000,
        reverse_on_signal: bool = False,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            record: Persisted session state
            strategy: Strategy variant to evaluate
            db: Datastore for state, trades and snapshots
            history: Warm-up candles, oldest first
            window_size: Trailing window length
            position_fraction: Fraction of equity committed per position
            snapshot_cooldown_ms: Minimum spacing of mark-to-market snapshots
            reverse_on_signal: Open the opposite position when closing on a signal
            clock: Epoch-millisecond clock
        """
        self._record = record
        self.strategy = strategy
        self._db = db
        self.window_size = window_size
        self.position_fraction = position_fraction
        self.snapshot_cooldown_ms = snapshot_cooldown_ms
        self.reverse_on_signal = reverse_on_signal
        self._clock = clock

        self._candles: List[Candle] = list(history or [])[-window_size:]
        self._forming: Optional[Candle] = None
        self._last_signal: Optional[Signal] = None
        self._last_ts: int = record.last_update or record.created_at
        self._last_snapshot_ms: Optional[int] = None
        self.lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._record.session_id

    @property
    def record(self) -> SessionRecord:
        """Snapshot copy of the current session state."""
        return replace(self._record)

    @property
    def symbol(self) -> str:
        return self._record.symbol

    @property
    def interval(self) -> str:
        return self._record.interval

    @property
    def is_active(self) -> bool:
        return self._record.is_active

    @property
    def position_state(self) -> PositionState:
        direction = _sign(self._record.current_position)
        if direction > 0:
            return PositionState.LONG
        if direction < 0:
            return PositionState.SHORT
        return PositionState.FLAT

    @property
    def candles(self) -> List[Candle]:
        """The live window: closed candles plus the forming one, if any."""
        candles = list(self._candles)
        if self._forming is not None:
            candles.append(self._forming)
        return candles

    # ------------------------------------------------------------------
    # Tick handling
    # ------------------------------------------------------------------

    async def on_candle(self, candle: Candle, is_final: bool = True) -> List[TradeRecord]:
        """
        Process one live candle update.

        Returns:
            Trades executed on this tick (empty when none or when stopped)

        Raises:
            PersistenceError: The tick's writes failed after retries; position,
                equity and the last acted-on signal keep their previous values,
                so the same signal is acted on again at the next closed candle.
        """
        async with self.lock:
            if not self.is_active:
                return []

            if not is_final:
                self._forming = candle
                await self._mark_to_market(candle.close)
                return []

            self._append_closed(candle)
            decision, previous, signal = self._decide()
            try:
                if decision.signal is Signal.HOLD:
                    await self._mark_to_market(candle.close)
                    trades: List[TradeRecord] = []
                else:
                    trades = await self._execute(decision, candle.close)
            except PersistenceError:
                self._last_signal = previous
                raise
            self._last_signal = signal
            return trades

    async def apply_signal(
        self,
        decision: SignalDecision,
        price: float,
        quantity: Optional[float] = None
    ) -> List[TradeRecord]:
        """
        Act on a signal at ``price`` without evaluating the strategy.

        Args:
            decision: Signal and reason
            price: Fill price
            quantity: Units for a newly opened position (equity-based when None)
        """
        async with self.lock:
            if not self.is_active or decision.signal is Signal.HOLD:
                return []
            return await self._execute(decision, price, quantity)

    def _append_closed(self, candle: Candle) -> None:
        if self._candles and self._candles[-1].timestamp == candle.timestamp:
            self._candles[-1] = candle
        elif self._candles and candle.timestamp < self._candles[-1].timestamp:
            logger.debug(f"{self.session_id}: ignoring out-of-order candle {candle.timestamp}")
            return
        else:
            self._candles.append(candle)
        if len(self._candles) > self.window_size:
            del self._candles[:-self.window_size]
        self._forming = None

    def _decide(self) -> Tuple[SignalDecision, Optional[Signal], Signal]:
        """
        Evaluate the strategy over the window.

        Returns:
            (decision to act on, signal before this tick, signal of this tick)
        """
        window = CandleWindow.from_candles(self._candles)
        decision = self.strategy.evaluate(window)
        previous = self._last_signal

        if self._record.execution_mode is ExecutionMode.EDGE:
            if previous is None:
                previous = self.strategy.evaluate(window.without_last()).signal
            if decision.signal == previous:
                return SignalDecision(Signal.HOLD, "signal unchanged"), previous, decision.signal

        return decision, previous, decision.signal

    def _next_timestamp(self) -> int:
        """Wall-clock time, clamped so session timestamps never go backwards."""
        ts = max(self._clock(), self._last_ts)
        self._last_ts = ts
        return ts

    async def _mark_to_market(self, price: float) -> None:
        rec = self._record
        if rec.current_position == 0 or rec.entry_price is None:
            return

        ts = self._next_timestamp()
        updated = replace(rec)
        updated.current_equity = rec.entry_equity + (price - rec.entry_price) * rec.current_position
        updated.last_update = ts

        due = (
            self._last_snapshot_ms is None
            or ts - self._last_snapshot_ms >= self.snapshot_cooldown_ms
        )
        if due:
            saved = await self._db.save_session_state(
                updated, snapshot=EquitySnapshot(rec.session_id, updated.current_equity, ts)
            )
            if not saved:
                await self._follow_external_stop()
                return
            self._last_snapshot_ms = ts
        self._record = updated

    async def _execute(
        self,
        decision: SignalDecision,
        price: float,
        quantity: Optional[float] = None
    ) -> List[TradeRecord]:
        rec = self._record
        target = decision.signal.direction
        current = _sign(rec.current_position)
        if target == current:
            await self._mark_to_market(price)
            return []

        ts = self._next_timestamp()
        updated = replace(rec)
        trades: List[TradeRecord] = []

        if current != 0:
            size = abs(rec.current_position)
            pnl = (price - rec.entry_price) * size * current
            updated.current_equity = rec.entry_equity + pnl
            updated.current_position = 0.0
            updated.entry_price = None
            trades.append(TradeRecord(
                session_id=rec.session_id,
                symbol=rec.symbol,
                side=TradeSide.SELL if current > 0 else TradeSide.BUY,
                price=price,
                quantity=size,
                pnl=pnl,
                reason=decision.reason,
                timestamp=ts,
            ))

        if current == 0 or self.reverse_on_signal:
            size = quantity if quantity is not None else (
                updated.current_equity * self.position_fraction / price
            )
            if size > 0:
                updated.current_position = size * target
                updated.entry_price = price
                updated.entry_equity = updated.current_equity
                trades.append(TradeRecord(
                    session_id=rec.session_id,
                    symbol=rec.symbol,
                    side=TradeSide.BUY if target > 0 else TradeSide.SELL,
                    price=price,
                    quantity=size,
                    pnl=None,
                    reason=decision.reason,
                    timestamp=ts,
                ))

        if not trades:
            return []

        updated.last_update = ts
        saved = await self._db.save_session_state(
            updated,
            trades=trades,
            snapshot=EquitySnapshot(rec.session_id, updated.current_equity, ts)
        )
        if not saved:
            await self._follow_external_stop()
            return []
        self._record = updated
        self._last_snapshot_ms = ts

        for trade in trades:
            trade_logger.log_trade(trade.to_dict())
        return trades

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> SessionRecord:
        """Stop the session. Terminal; waits for an in-flight tick to finish."""
        async with self.lock:
            if not self.is_active:
                return self.record
            ts = self._next_timestamp()
            updated = replace(self._record)
            updated.status = SessionStatus.STOPPED
            updated.stopped_at = ts
            updated.last_update = ts
            await self._db.save_session_state(updated)
            self._record = updated
            logger.info(f"Session {self.session_id} stopped")
            return self.record

    async def _follow_external_stop(self) -> None:
        """The stored session was stopped elsewhere; adopt the stored state."""
        stored = await self._db.get_session(self.session_id)
        if stored is None or stored.is_active:
            stored = replace(self._record)
            stored.status = SessionStatus.STOPPED
            stored.stopped_at = stored.last_update = self._next_timestamp()
        self._record = stored
        logger.warning(f"Session {self.session_id} was stopped elsewhere; dropping live state")
