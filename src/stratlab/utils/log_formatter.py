"""
Log formatters for Strategy Lab.

This module provides custom log formatters for structured logging including:
- JSON format for machine parsing (file logs)
- Colored console output (colorama)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from colorama import Fore, Style, just_fix_windows_console


# Standard log record attributes that never count as extra data
_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'correlation_id', 'category', 'asctime', 'taskName', 'message'
}


def extract_extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the non-standard attributes attached to a log record."""
    extra = {}
    for key, value in record.__dict__.items():
        if key not in _STANDARD_ATTRS and not key.startswith('_'):
            extra[key] = value
    return extra


class JsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example output:
    {
        "timestamp": "2024-01-27T10:30:00.123456Z",
        "level": "INFO",
        "logger": "stratlab.paper.session",
        "message": "Opened LONG",
        "category": "PAPER",
        "data": {...}
    }
    """

    def __init__(
        self,
        include_extra: bool = True,
        indent: Optional[int] = None,
        default_fields: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize JSON formatter.

        Args:
            include_extra: Include extra fields from log record
            indent: JSON indentation (None for compact, int for pretty print)
            default_fields: Default fields to include in every log entry
        """
        super().__init__()
        self.include_extra = include_extra
        self.indent = indent
        self.default_fields = default_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            'timestamp': timestamp.strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        if getattr(record, 'correlation_id', None):
            log_data['correlation_id'] = record.correlation_id

        if getattr(record, 'category', None):
            log_data['category'] = record.category

        log_data['source'] = {
            'file': record.pathname,
            'line': record.lineno,
            'function': record.funcName
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_data = extract_extra_fields(record)
            if extra_data:
                log_data['data'] = extra_data

        log_data.update(self.default_fields)

        return json.dumps(log_data, indent=self.indent, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Colored console formatter for human-readable logs.

    Level names are colored with colorama so the output also renders on
    Windows consoles.
    """

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
        show_category: bool = True
    ):
        """
        Initialize colored formatter.

        Args:
            fmt: Format string (uses default if None)
            datefmt: Date format string
            use_colors: Enable/disable colors
            show_category: Show log category in output
        """
        if fmt is None:
            if show_category:
                fmt = '%(asctime)s | %(levelname)-8s | %(category)-11s | %(name)s | %(message)s'
            else:
                fmt = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

        super().__init__(fmt, datefmt)
        self.use_colors = use_colors
        self.show_category = show_category

        if use_colors:
            just_fix_windows_console()

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'category'):
            record.category = 'GENERAL'

        formatted = super().format(record)
        if not self.use_colors:
            return formatted

        level_color = self.COLORS.get(record.levelname, '')
        formatted = formatted.replace(
            record.levelname,
            f"{level_color}{record.levelname}{Style.RESET_ALL}",
            1
        )
        if record.category:
            formatted = formatted.replace(
                record.category,
                f"{Style.DIM}{record.category}{Style.RESET_ALL}",
                1
            )
        return formatted


class CategoryFilter(logging.Filter):
    """Filter log records by category."""

    def __init__(self, include_categories=None, exclude_categories=None):
        super().__init__()
        self.include_categories = set(include_categories or [])
        self.exclude_categories = set(exclude_categories or [])

    def filter(self, record: logging.LogRecord) -> bool:
        category = getattr(record, 'category', 'GENERAL')
        if self.include_categories and category not in self.include_categories:
            return False
        if category in self.exclude_categories:
            return False
        return True
