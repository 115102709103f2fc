"""
Backtest engine.

Replays a candle series through one strategy parameterization and
produces the equity curve, closed trades, performance metrics and a
fractional Kelly estimate.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union
import logging

import numpy as np

from ..exceptions import InsufficientDataError
from ..market.candles import Candle, CandleWindow
from ..risk.metrics import PerformanceCalculator, PerformanceMetrics
from ..strategies.signals import Signal

logger = logging.getLogger(__name__)


class ExecutionPricePolicy(str, Enum):
    """
    Price at which a signal fills.

    NEXT_OPEN: a signal seen on candle t fills at candle t+1's open.
    SIGNAL_CLOSE: a signal fills at the close of the candle that produced it.
    """
    NEXT_OPEN = "next_open"
    SIGNAL_CLOSE = "signal_close"


@dataclass
class BacktestConfig:
    """Configuration for a backtest run."""
    initial_capital: float = 10000.0
    execution_price: ExecutionPricePolicy = ExecutionPricePolicy.NEXT_OPEN
    allow_short: bool = True
    fee_rate: float = 0.0
    kelly_scale: float = 0.5

    def __post_init__(self):
        self.execution_price = ExecutionPricePolicy(self.execution_price)
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")

    @classmethod
    def from_settings(cls, settings) -> 'BacktestConfig':
        """Build from ``BacktestSettings``."""
        return cls(
            initial_capital=settings.initial_capital,
            execution_price=ExecutionPricePolicy(settings.execution_price),
            allow_short=settings.allow_short,
            fee_rate=settings.fee_rate,
            kelly_scale=settings.kelly_scale,
        )


@dataclass
class BacktestTrade:
    """One closed round trip."""
    direction: int
    entry_time: int
    exit_time: int
    entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    entry_reason: str = ""
    exit_reason: str = ""

    @property
    def side(self) -> str:
        return Signal.BUY.value if self.direction > 0 else Signal.SELL.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'side': self.side,
            'entry_time': self.entry_time,
            'exit_time': self.exit_time,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'quantity': self.quantity,
            'pnl': self.pnl,
            'entry_reason': self.entry_reason,
            'exit_reason': self.exit_reason,
        }


@dataclass
class BacktestResult:
    """Results from a backtest run."""
    equity_curve: List[float]
    metrics: PerformanceMetrics
    trades: List[BacktestTrade] = field(default_factory=list)
    kelly_fraction: float = 0.0

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1] if self.equity_curve else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'equity_curve': list(self.equity_curve),
            'metrics': self.metrics.to_dict(),
            'trades': [t.to_dict() for t in self.trades],
            'kelly_fraction': self.kelly_fraction,
        }


@dataclass
class _OpenPosition:
    direction: int
    quantity: float
    entry_price: float
    entry_time: int
    entry_fee: float
    reason: str


class Backtester:
    """
    Single-strategy, single-series backtester.

    Position size is the full current equity notional at the fill price.
    A directional signal different from the current exposure closes the
    open position and opens the new direction (SELL opens a short only
    when shorting is allowed). A position still open after the last
    candle is closed at the last close. Equity that reaches zero ends
    trading for the run.
    """

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()

    def run(self, strategy, candles: Union[Sequence[Candle], CandleWindow]) -> BacktestResult:
        """
        Backtest ``strategy`` over ``candles``.

        Args:
            strategy: Any registered strategy variant
            candles: Ordered candles, oldest first

        Returns:
            BacktestResult

        Raises:
            InsufficientDataError: Fewer candles than the strategy's minimum
                window plus one fill candle.
        """
        window = candles if isinstance(candles, CandleWindow) else CandleWindow.from_candles(candles)
        n = len(window)
        required = strategy.min_window + 1
        if n < required:
            raise InsufficientDataError(
                message=(
                    f"{strategy.strategy_type} needs {required} candles, got {n}"
                ),
                required=required,
                available=n
            )

        codes = np.asarray(strategy.signals(window), dtype=np.int8).copy()
        # evaluate() holds until the window reaches min_window
        codes[:strategy.min_window - 1] = 0

        cfg = self.config
        next_open = cfg.execution_price is ExecutionPricePolicy.NEXT_OPEN

        self._equity = cfg.initial_capital
        self._position: Optional[_OpenPosition] = None
        self._trades: List[BacktestTrade] = []
        curve: List[float] = []
        pending: Optional[int] = None

        for i in range(n):
            if pending is not None:
                self._rebalance(pending, float(window.opens[i]), int(window.timestamps[i]), strategy)
                pending = None

            target = self._target_for(int(codes[i]))
            if target is not None and target != self._exposure():
                if not next_open:
                    self._rebalance(target, float(window.closes[i]), int(window.timestamps[i]), strategy)
                elif i + 1 < n:
                    pending = target

            curve.append(self._mark_to_market(float(window.closes[i])))

        if self._position is not None:
            self._close(float(window.closes[-1]), int(window.timestamps[-1]), "end of data")
            curve[-1] = self._equity

        calculator = PerformanceCalculator(curve, [t.pnl for t in self._trades], cfg.initial_capital)
        metrics = calculator.calculate_all_metrics()
        kelly = calculator.calculate_kelly_fraction(cfg.kelly_scale)

        logger.debug(
            f"Backtest {strategy.strategy_type}: {metrics.trade_count} trades, "
            f"return {metrics.total_return_pct:.2f}%, sharpe {metrics.sharpe:.4f}"
        )
        return BacktestResult(equity_curve=curve, metrics=metrics, trades=self._trades, kelly_fraction=kelly)

    def _exposure(self) -> int:
        return self._position.direction if self._position else 0

    def _target_for(self, code: int) -> Optional[int]:
        """Exposure a signal asks for, or None for HOLD."""
        if code > 0:
            return 1
        if code < 0:
            return -1 if self.config.allow_short else 0
        return None

    def _mark_to_market(self, price: float) -> float:
        pos = self._position
        if pos is None:
            return self._equity
        unrealized = (price - pos.entry_price) * pos.quantity * pos.direction
        return max(self._equity + unrealized, 0.0)

    def _rebalance(self, target: int, price: float, timestamp: int, strategy) -> None:
        if target == self._exposure():
            return
        signal = Signal.BUY if target > 0 else Signal.SELL
        if self._position is not None:
            verb = "Reversed" if target != 0 else "Exit"
            self._close(price, timestamp, f"{verb}: {strategy.reason(signal)}")
        if target != 0 and self._equity > 0:
            self._open(target, price, timestamp, strategy.reason(signal))

    def _open(self, direction: int, price: float, timestamp: int, reason: str) -> None:
        quantity = self._equity / price
        fee = quantity * price * self.config.fee_rate
        self._equity -= fee
        self._position = _OpenPosition(
            direction=direction,
            quantity=quantity,
            entry_price=price,
            entry_time=timestamp,
            entry_fee=fee,
            reason=reason,
        )

    def _close(self, price: float, timestamp: int, reason: str) -> None:
        pos = self._position
        gross = (price - pos.entry_price) * pos.quantity * pos.direction
        exit_fee = pos.quantity * price * self.config.fee_rate
        self._equity = max(self._equity + gross - exit_fee, 0.0)
        self._trades.append(BacktestTrade(
            direction=pos.direction,
            entry_time=pos.entry_time,
            exit_time=timestamp,
            entry_price=pos.entry_price,
            exit_price=price,
            quantity=pos.quantity,
            pnl=gross - exit_fee - pos.entry_fee,
            entry_reason=pos.reason,
            exit_reason=reason,
        ))
        self._position = None


def run_backtest(strategy, candles, config: Optional[BacktestConfig] = None) -> BacktestResult:
    """Convenience wrapper; a pure function of its inputs (safe for process pools)."""
    return Backtester(config).run(strategy, candles)
