"""
Paper-trading package.

Per-session execution state machine and the live candle dispatcher.
"""

from .session import PaperTradingSession, PositionState
from .engine import TradingEngine

__all__ = [
    'PaperTradingSession',
    'PositionState',
    'TradingEngine',
]
