"""
Data models for the Strategy Lab datastore.

This module defines dataclasses for the persisted entities: strategies,
paper-trading sessions, trades, equity snapshots and the materialized
portfolio series. All timestamps are epoch milliseconds (UTC).
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from enum import Enum

from ..config.config_manager import ExecutionMode
from ..risk.metrics import PerformanceMetrics
from ..utils.helpers import generate_id, from_json, now_ms, parse_timestamp_ms


class SessionStatus(Enum):
    """Session lifecycle; STOPPED is terminal."""
    ACTIVE = "active"
    STOPPED = "stopped"


class TradeSide(Enum):
    """Trade side enumeration."""
    BUY = "BUY"
    SELL = "SELL"


def _load_json(value, default):
    if isinstance(value, str):
        loaded = from_json(value)
        return default if loaded is None else loaded
    return default if value is None else value


@dataclass
class StrategyRecord:
    """A scored strategy parameterization. Immutable once created."""

    strategy_type: str
    symbol: str
    interval: str
    parameters: Dict[str, Any]
    performance_metrics: PerformanceMetrics
    kelly_fraction: float
    backtest_curve: List[float] = field(default_factory=list)
    name: str = ""
    strategy_id: str = field(default_factory=lambda: generate_id("strat"))
    created_at: int = field(default_factory=now_ms)

    def __post_init__(self):
        if not 0.0 <= self.kelly_fraction <= 1.0:
            raise ValueError(f"kelly_fraction must be within [0, 1], got {self.kelly_fraction}")
        if not self.name:
            self.name = f"{self.symbol} {self.interval} {self.strategy_type}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy_id': self.strategy_id,
            'name': self.name,
            'strategy_type': self.strategy_type,
            'symbol': self.symbol,
            'interval': self.interval,
            'parameters': dict(self.parameters),
            'performance_metrics': self.performance_metrics.to_dict(),
            'backtest_curve': list(self.backtest_curve),
            'kelly_fraction': self.kelly_fraction,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StrategyRecord':
        """Create from a dict or database row; JSON columns may still be strings."""
        return cls(
            strategy_id=data['strategy_id'],
            name=data.get('name') or "",
            strategy_type=data['strategy_type'],
            symbol=data['symbol'],
            interval=data['interval'],
            parameters=_load_json(data.get('parameters'), {}),
            performance_metrics=PerformanceMetrics.from_dict(
                _load_json(data.get('performance_metrics'), {})
            ),
            backtest_curve=_load_json(data.get('backtest_curve'), []),
            kelly_fraction=float(data.get('kelly_fraction') or 0.0),
            created_at=parse_timestamp_ms(data.get('created_at')) or now_ms(),
        )


@dataclass
class SessionRecord:
    """
    Persistent state of one paper-trading session.

    ``current_position`` is a signed size (positive long, negative short).
    ``entry_price`` is only set while a position is open.
    """

    strategy_id: str
    symbol: str
    interval: str
    initial_capital: float
    execution_mode: ExecutionMode = ExecutionMode.SYNC
    allocated_weight: Optional[float] = None
    session_id: str = field(default_factory=lambda: generate_id("sess"))
    entry_equity: Optional[float] = None
    current_equity: Optional[float] = None
    current_position: float = 0.0
    entry_price: Optional[float] = None
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: int = field(default_factory=now_ms)
    last_update: Optional[int] = None
    stopped_at: Optional[int] = None

    def __post_init__(self):
        self.execution_mode = ExecutionMode(self.execution_mode)
        self.status = SessionStatus(self.status)
        if self.entry_equity is None:
            self.entry_equity = self.initial_capital
        if self.current_equity is None:
            self.current_equity = self.initial_capital
        if self.last_update is None:
            self.last_update = self.created_at

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'strategy_id': self.strategy_id,
            'symbol': self.symbol,
            'interval': self.interval,
            'initial_capital': self.initial_capital,
            'entry_equity': self.entry_equity,
            'current_equity': self.current_equity,
            'current_position': self.current_position,
            'entry_price': self.entry_price,
            'status': self.status.value,
            'execution_mode': self.execution_mode.value,
            'allocated_weight': self.allocated_weight,
            'created_at': self.created_at,
            'last_update': self.last_update,
            'stopped_at': self.stopped_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionRecord':
        return cls(
            session_id=data['session_id'],
            strategy_id=data['strategy_id'],
            symbol=data['symbol'],
            interval=data['interval'],
            initial_capital=float(data['initial_capital']),
            entry_equity=data.get('entry_equity'),
            current_equity=data.get('current_equity'),
            current_position=float(data.get('current_position') or 0.0),
            entry_price=data.get('entry_price'),
            status=SessionStatus(data.get('status', 'active')),
            execution_mode=ExecutionMode(data.get('execution_mode', 'sync')),
            allocated_weight=data.get('allocated_weight'),
            created_at=parse_timestamp_ms(data.get('created_at')) or now_ms(),
            last_update=parse_timestamp_ms(data.get('last_update')),
            stopped_at=parse_timestamp_ms(data.get('stopped_at')),
        )


@dataclass
class TradeRecord:
    """One simulated fill. Entries carry ``pnl=None``. Append-only."""

    session_id: str
    symbol: str
    side: TradeSide
    price: float
    quantity: float
    timestamp: int
    pnl: Optional[float] = None
    reason: str = ""
    trade_id: str = field(default_factory=lambda: generate_id("trade"))

    def __post_init__(self):
        self.side = TradeSide(self.side)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'session_id': self.session_id,
            'symbol': self.symbol,
            'side': self.side.value,
            'price': self.price,
            'quantity': self.quantity,
            'pnl': self.pnl,
            'reason': self.reason,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TradeRecord':
        return cls(
            trade_id=data['trade_id'],
            session_id=data['session_id'],
            symbol=data['symbol'],
            side=TradeSide(data['side']),
            price=float(data['price']),
            quantity=float(data['quantity']),
            pnl=data.get('pnl'),
            reason=data.get('reason') or "",
            timestamp=parse_timestamp_ms(data['timestamp']),
        )


@dataclass
class EquitySnapshot:
    """Session equity at a point in time."""
    session_id: str
    equity: float
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {'session_id': self.session_id, 'equity': self.equity, 'timestamp': self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EquitySnapshot':
        return cls(
            session_id=data['session_id'],
            equity=float(data['equity']),
            timestamp=parse_timestamp_ms(data['timestamp']),
        )


@dataclass
class PortfolioPoint:
    """Total portfolio equity at one rollup step."""
    timestamp: int
    total_equity: float

    def to_dict(self) -> Dict[str, Any]:
        return {'timestamp': self.timestamp, 'total_equity': self.total_equity}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PortfolioPoint':
        return cls(
            timestamp=parse_timestamp_ms(data['timestamp']),
            total_equity=float(data['total_equity']),
        )
