"""
Database package for Strategy Lab.

SQLite datastore (aiosqlite) and the persisted data models.
"""

from .db_manager import DatabaseManager
from .models import (
    StrategyRecord,
    SessionRecord,
    SessionStatus,
    TradeRecord,
    TradeSide,
    EquitySnapshot,
    PortfolioPoint,
)

__all__ = [
    'DatabaseManager',
    'StrategyRecord',
    'SessionRecord',
    'SessionStatus',
    'TradeRecord',
    'TradeSide',
    'EquitySnapshot',
    'PortfolioPoint',
]
