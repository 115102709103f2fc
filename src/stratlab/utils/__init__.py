"""
Utilities package for Strategy Lab.

Logging setup, formatters and small shared helpers.
"""

from .logger import (
    LogCategory,
    LoggerAdapter,
    LoggerManager,
    setup_logging,
    get_logger,
    shutdown_logging,
)
from .log_formatter import JsonFormatter, ColoredFormatter, CategoryFilter
from .helpers import (
    generate_id,
    to_json,
    from_json,
    now_ms,
    ms_to_datetime,
    parse_timestamp_ms,
    calculate_backoff_delay,
    retry_async,
)

__all__ = [
    'LogCategory',
    'LoggerAdapter',
    'LoggerManager',
    'setup_logging',
    'get_logger',
    'shutdown_logging',
    'JsonFormatter',
    'ColoredFormatter',
    'CategoryFilter',
    'generate_id',
    'to_json',
    'from_json',
    'now_ms',
    'ms_to_datetime',
    'parse_timestamp_ms',
    'calculate_backoff_delay',
    'retry_async',
]
