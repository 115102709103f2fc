"""
Portfolio package.

Session lifecycle, Kelly capital allocation and the materialized
portfolio equity series.
"""

from .allocation import AllocationPlan, compute_allocations
from .rollup import PortfolioRollup, HISTORY_INTERVALS, resample_history, session_active_at
from .session_manager import SessionManager, SessionRegistry

__all__ = [
    'AllocationPlan',
    'compute_allocations',
    'PortfolioRollup',
    'HISTORY_INTERVALS',
    'resample_history',
    'session_active_at',
    'SessionManager',
    'SessionRegistry',
]
