"""
Logging system for Strategy Lab.

Wraps the standard ``logging`` module with a process-wide manager,
category tags and helpers for the events this system cares about
(optimizer runs, paper trades, risk events).

Example Usage:
    from stratlab.utils import get_logger, setup_logging
    from stratlab.config import load_config

    config = load_config('config/config.yaml')
    setup_logging(config.logging)

    logger = get_logger('stratlab.paper')
    logger.log_trade({
        'session_id': 'sess_ab12cd34',
        'symbol': 'BTCUSDT',
        'side': 'BUY',
        'price': 50000,
        'quantity': 0.1
    })
"""

import logging
import logging.handlers
import sys
import threading
import uuid
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .log_formatter import JsonFormatter, ColoredFormatter


class LogCategory(Enum):
    """Log categories for organizing log output."""
    OPTIMIZER = "OPTIMIZER"
    BACKTEST = "BACKTEST"
    PAPER = "PAPER"
    PORTFOLIO = "PORTFOLIO"
    RISK = "RISK"
    MARKET_DATA = "MARKET_DATA"
    DATABASE = "DATABASE"
    SYSTEM = "SYSTEM"
    GENERAL = "GENERAL"


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds correlation ID and category support.

    Provides category-specific logging methods on top of the standard
    logger interface.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})
        self._correlation_id = None

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        if 'extra' not in kwargs:
            kwargs['extra'] = {}

        if self._correlation_id and 'correlation_id' not in kwargs['extra']:
            kwargs['extra']['correlation_id'] = self._correlation_id

        for key, value in self.extra.items():
            if key not in kwargs['extra']:
                kwargs['extra'][key] = value

        return msg, kwargs

    @contextmanager
    def correlation_context(self, correlation_id: Optional[str] = None):
        """
        Context manager for correlation ID scope.

        Example:
            with logger.correlation_context():
                logger.info("Generating strategies")
        """
        old_id = self._correlation_id
        self._correlation_id = correlation_id or str(uuid.uuid4())
        try:
            yield self._correlation_id
        finally:
            self._correlation_id = old_id

    def log_trade(self, trade_data: Dict[str, Any], msg: str = "", level: int = logging.INFO) -> None:
        """
        Log a simulated trade.

        Args:
            trade_data: Trade data dictionary
            msg: Optional message
            level: Log level
        """
        if not msg:
            msg = (
                f"Trade: {trade_data.get('side', 'unknown')} "
                f"{trade_data.get('quantity', '?')} {trade_data.get('symbol', 'unknown')} "
                f"@ {trade_data.get('price', '?')}"
            )

        self.log(level, msg, extra={
            'category': LogCategory.PAPER.value,
            'trade_data': trade_data
        })

    def log_risk_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.WARNING) -> None:
        """
        Log a risk event.

        Args:
            event_data: Risk event data dictionary
            msg: Optional message
            level: Log level
        """
        if not msg:
            msg = f"Risk event: {event_data.get('event_type', 'unknown')}"

        self.log(level, msg, extra={
            'category': LogCategory.RISK.value,
            'risk_data': event_data
        })

    def log_optimizer_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.INFO) -> None:
        if not msg:
            msg = (
                f"Optimizer: {event_data.get('symbol', 'unknown')} "
                f"{event_data.get('interval', 'unknown')}"
            )

        self.log(level, msg, extra={
            'category': LogCategory.OPTIMIZER.value,
            'optimizer_data': event_data
        })

    def log_system_event(self, event_data: Dict[str, Any], msg: str = "", level: int = logging.INFO) -> None:
        if not msg:
            msg = f"System: {event_data.get('event_type', 'unknown')}"

        self.log(level, msg, extra={
            'category': LogCategory.SYSTEM.value,
            'system_data': event_data
        })


class LoggerManager:
    """
    Manager for the logging system.

    Handles initialization, configuration, and lifecycle of loggers.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Singleton pattern for LoggerManager."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._loggers: Dict[str, LoggerAdapter] = {}
        self._handlers: List[logging.Handler] = []
        self._setup_done = False

    def setup_logging(self, config: Optional[Any] = None) -> None:
        """
        Setup the logging system.

        Args:
            config: ``LoggingSettings`` instance or a plain dict with the same keys
        """
        if self._setup_done:
            return

        if config is None:
            log_config: Dict[str, Any] = {}
        elif isinstance(config, dict):
            log_config = config
        else:
            log_config = config.model_dump(mode='json')

        root_level = self._get_log_level(log_config.get('level', 'INFO'))
        logging.getLogger().setLevel(root_level)
        logging.getLogger().handlers = []

        if log_config.get('console', True):
            self._setup_console_handler(log_config.get('colors', True))

        if log_config.get('file', False):
            self._setup_file_handler(
                log_config.get('directory', 'logs'),
                log_config.get('filename', 'stratlab.log')
            )

        self._setup_done = True

        logger = self.get_logger('stratlab.system')
        logger.log_system_event(
            {
                'event_type': 'logging_initialized',
                'level': logging.getLevelName(root_level),
                'console': log_config.get('console', True),
                'file': log_config.get('file', False),
            },
            msg="Logging system initialized",
            level=logging.DEBUG
        )

    def _get_log_level(self, level: Union[str, int]) -> int:
        if isinstance(level, int):
            return level

        levels = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'ERROR': logging.ERROR,
            'CRITICAL': logging.CRITICAL
        }
        return levels.get(str(level).upper(), logging.INFO)

    def _setup_console_handler(self, use_colors: bool) -> None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColoredFormatter(use_colors=use_colors))

        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def _setup_file_handler(self, directory: str, filename: str) -> None:
        """Setup a JSON file handler rotated at midnight."""
        filepath = Path(directory) / filename
        filepath.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(filepath),
            when='midnight',
            interval=1,
            backupCount=30,
            encoding='utf-8'
        )
        handler.setFormatter(JsonFormatter())

        logging.getLogger().addHandler(handler)
        self._handlers.append(handler)

    def get_logger(self, name: str) -> LoggerAdapter:
        if name not in self._loggers:
            self._loggers[name] = LoggerAdapter(logging.getLogger(name))
        return self._loggers[name]

    def shutdown(self) -> None:
        """Close every handler installed by this manager."""
        root = logging.getLogger()
        for handler in self._handlers:
            root.removeHandler(handler)
            handler.close()

        self._handlers = []
        self._setup_done = False


_logger_manager = LoggerManager()


def setup_logging(config: Optional[Any] = None) -> None:
    """
    Setup the logging system.

    Example:
        setup_logging({'level': 'DEBUG', 'console': True, 'file': False})
    """
    _logger_manager.setup_logging(config)


def get_logger(name: str) -> LoggerAdapter:
    """
    Get a logger instance.

    Example:
        logger = get_logger('stratlab.optimizer')
        logger.info("Search started")
    """
    return _logger_manager.get_logger(name)


def shutdown_logging() -> None:
    """Shutdown the logging system."""
    _logger_manager.shutdown()
