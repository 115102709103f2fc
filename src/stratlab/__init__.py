"""
Strategy Lab.

Strategy optimizer, backtester and paper-trading engine for
cryptocurrency price series.
"""

__version__ = "1.0.0"
