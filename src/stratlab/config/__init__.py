"""
Configuration package for Strategy Lab.

This package provides configuration management with support for YAML/JSON files,
environment variable overrides, and Pydantic-based validation.
"""

from .config_manager import (
    ConfigManager,
    StratLabConfig,
    MarketDataSettings,
    OptimizerSettings,
    BacktestSettings,
    PaperTradingSettings,
    PortfolioSettings,
    DatabaseSettings,
    LoggingSettings,
    ExecutionMode,
    LogLevel,
    VALID_INTERVALS,
    load_config,
)

__all__ = [
    'ConfigManager',
    'StratLabConfig',
    'MarketDataSettings',
    'OptimizerSettings',
    'BacktestSettings',
    'PaperTradingSettings',
    'PortfolioSettings',
    'DatabaseSettings',
    'LoggingSettings',
    'ExecutionMode',
    'LogLevel',
    'VALID_INTERVALS',
    'load_config',
]
