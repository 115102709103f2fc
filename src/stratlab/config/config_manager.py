"""
Configuration Manager for Strategy Lab.

This module provides centralized configuration management with support for:
- YAML and JSON configuration files
- .env files and environment variable overrides
- Pydantic-based validation
- Default values for optional parameters
"""

import os
import json
import yaml
from pathlib import Path
from typing import List, Optional, Union, Dict, Any
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, ValidationError
from enum import Enum


VALID_INTERVALS = ["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "12h", "1d"]


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ExecutionMode(str, Enum):
    """Paper-trading execution modes."""
    SYNC = "sync"
    EDGE = "edge"


class MarketDataSettings(BaseModel):
    """Market data provider and stream settings."""
    exchange_id: str = Field(default="binance", description="ccxt exchange identifier")
    api_key: Optional[str] = Field(default=None, description="Optional API key (public data needs none)")
    api_secret: Optional[str] = Field(default=None, description="Optional API secret")
    ws_endpoint: str = Field(
        default="wss://stream.binance.com:9443",
        description="Base URL of the kline websocket stream"
    )
    max_concurrent_requests: int = Field(default=4, ge=1, description="FetchGate concurrency bound")
    min_request_interval: float = Field(
        default=0.1, ge=0,
        description="Minimum spacing between request starts in seconds"
    )
    max_retries: int = Field(default=3, ge=0, description="Retries for throttled or failed fetches")
    retry_delay_base: float = Field(default=1.0, ge=0, description="Base backoff delay in seconds")
    retry_delay_max: float = Field(default=30.0, ge=0, description="Maximum backoff delay in seconds")
    timeout_ms: int = Field(default=30000, ge=1000, description="Request timeout in milliseconds")


class OptimizerSettings(BaseModel):
    """Parameter search settings."""
    top_n: int = Field(default=10, ge=1, description="Strategies kept per symbol/interval")
    limit: int = Field(default=1000, ge=1, description="Candles fetched per symbol/interval")
    iterations: int = Field(default=50, ge=1, description="Parameter sets tried per strategy type")
    workers: int = Field(default=0, ge=0, description="Process pool size (0 uses a thread of this process)")
    min_trades: int = Field(default=10, ge=0, description="Candidates need more closed trades than this")
    require_positive_return: bool = Field(
        default=True,
        description="Discard candidates with a non-positive total return"
    )
    seed: Optional[int] = Field(default=None, description="Random seed for the parameter search")
    curve_points: int = Field(default=50, ge=2, description="Stored backtest curve resolution")
    strategy_types: Optional[List[str]] = Field(
        default=None,
        description="Restrict the search to these strategy types (all when unset)"
    )


class BacktestSettings(BaseModel):
    """Backtest simulation settings."""
    initial_capital: float = Field(default=10000.0, gt=0, description="Starting equity")
    execution_price: str = Field(default="next_open", description="'next_open' or 'signal_close'")
    allow_short: bool = Field(default=True, description="Open short positions on SELL signals")
    fee_rate: float = Field(default=0.0, ge=0, le=0.1, description="Fee charged on notional per fill")
    kelly_scale: float = Field(default=0.5, gt=0, le=1.0, description="Fractional Kelly multiplier")

    @field_validator('execution_price')
    @classmethod
    def validate_execution_price(cls, v):
        if v not in ("next_open", "signal_close"):
            raise ValueError("execution_price must be 'next_open' or 'signal_close'")
        return v


class PaperTradingSettings(BaseModel):
    """Paper-trading session settings."""
    default_capital: float = Field(default=10000.0, gt=0, description="Capital for a single session")
    execution_mode: ExecutionMode = Field(default=ExecutionMode.SYNC, description="Default execution mode")
    position_fraction: float = Field(
        default=1.0, gt=0, le=1.0,
        description="Fraction of session equity committed per position"
    )
    warmup_candles: int = Field(default=500, ge=1, description="History fetched to seed a session window")
    window_size: int = Field(default=500, ge=2, description="Trailing window kept per session")
    snapshot_cooldown_ms: int = Field(default=1000, ge=0, description="Throttle for mark-to-market snapshots")
    reverse_on_signal: bool = Field(
        default=False,
        description="Open the opposite position on the tick that closes one"
    )
    stream_reconnect_delay: float = Field(default=1.0, ge=0, description="Base delay before reconnecting the live stream")
    default_kelly_fraction: float = Field(
        default=0.1, ge=0, le=1.0,
        description="Kelly fraction assumed for strategies that have none"
    )


class PortfolioSettings(BaseModel):
    """Portfolio rollup settings."""
    rollup_interval_seconds: int = Field(default=60, ge=1, description="Rollup refresh period")
    history_range_days: int = Field(default=7, ge=1, description="Default history range")
    history_interval: str = Field(default="15m", description="Default history bucket")
    var_confidence: float = Field(default=0.95, gt=0, lt=1, description="VaR confidence level")
    drawdown_alert_pct: Optional[float] = Field(
        default=None, gt=0, le=100,
        description="Log a risk event when portfolio drawdown reaches this level"
    )

    @field_validator('history_interval')
    @classmethod
    def validate_history_interval(cls, v):
        if v not in ("3m", "15m", "1h", "1d"):
            raise ValueError("history_interval must be one of 3m, 15m, 1h, 1d")
        return v


class DatabaseSettings(BaseModel):
    """Datastore settings."""
    db_path: str = Field(default="data/stratlab.db", description="Path to SQLite database file")
    write_retries: int = Field(default=5, ge=0, description="Retries for trade/snapshot writes")
    retry_delay_base: float = Field(default=0.2, ge=0, description="Base backoff delay in seconds")
    retry_delay_max: float = Field(default=5.0, ge=0, description="Maximum backoff delay in seconds")


class LoggingSettings(BaseModel):
    """Logging settings."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    console: bool = Field(default=True, description="Log to the console")
    colors: bool = Field(default=True, description="Colorize console output")
    file: bool = Field(default=False, description="Write JSON logs to a rotating file")
    directory: str = Field(default="logs", description="Log directory")
    filename: str = Field(default="stratlab.log", description="Log file name")


class StratLabConfig(BaseModel):
    """Complete Strategy Lab configuration."""
    market_data: MarketDataSettings = Field(default_factory=MarketDataSettings)
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    paper_trading: PaperTradingSettings = Field(default_factory=PaperTradingSettings)
    portfolio: PortfolioSettings = Field(default_factory=PortfolioSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """
    Configuration manager for Strategy Lab.

    Handles loading configuration from YAML/JSON files with support for:
    - .env files (loaded before overrides are applied)
    - Environment variable overrides
    - Validation using Pydantic models
    - Saving configuration back to file

    Environment Variables:
        STRATLAB_EXCHANGE_ID: Override ccxt exchange id
        STRATLAB_API_KEY: Override API key
        STRATLAB_API_SECRET: Override API secret
        STRATLAB_WS_ENDPOINT: Override kline stream endpoint
        STRATLAB_WORKERS: Override optimizer process pool size
        STRATLAB_DB_PATH: Override database path
        STRATLAB_LOG_LEVEL: Override log level
    """

    ENV_MAPPINGS = {
        'STRATLAB_EXCHANGE_ID': ('market_data', 'exchange_id'),
        'STRATLAB_API_KEY': ('market_data', 'api_key'),
        'STRATLAB_API_SECRET': ('market_data', 'api_secret'),
        'STRATLAB_WS_ENDPOINT': ('market_data', 'ws_endpoint'),
        'STRATLAB_WORKERS': ('optimizer', 'workers'),
        'STRATLAB_DB_PATH': ('database', 'db_path'),
        'STRATLAB_LOG_LEVEL': ('logging', 'level'),
    }

    INT_FIELDS = [
        ('optimizer', 'workers'),
    ]

    def __init__(self, config_path: Optional[Union[str, Path]] = None, env_file: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to configuration file (YAML or JSON)
            env_file: Optional .env file; the default search is used when None
        """
        self._config_path: Optional[Path] = Path(config_path) if config_path else None
        self._env_file = env_file
        self._config: Optional[StratLabConfig] = None
        self._raw_config: Dict[str, Any] = {}

    def load_config(self, config_path: Optional[Union[str, Path]] = None) -> StratLabConfig:
        """
        Load configuration from file, or defaults when no file is given.

        Args:
            config_path: Path to configuration file. If not provided, uses the path
                        specified during initialization.

        Returns:
            StratLabConfig: Validated configuration object

        Raises:
            FileNotFoundError: If configuration file does not exist
            ValueError: If configuration format or content is invalid
        """
        if config_path:
            self._config_path = Path(config_path)

        load_dotenv(self._env_file, override=False)

        if self._config_path:
            if not self._config_path.exists():
                raise FileNotFoundError(
                    f"Configuration file not found: {self._config_path}"
                )
            self._raw_config = self._load_file(self._config_path)
        else:
            self._raw_config = {}

        self._apply_env_overrides()

        try:
            self._config = StratLabConfig(**self._raw_config)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        return self._config

    def _load_file(self, path: Path) -> Dict[str, Any]:
        """
        Load configuration from file based on extension.

        Raises:
            ValueError: If file format is not supported
        """
        suffix = path.suffix.lower()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if suffix in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif suffix == '.json':
                    return json.load(f)
                else:
                    raise ValueError(
                        f"Unsupported configuration format: {suffix}. "
                        "Use .yaml, .yml, or .json"
                    )
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML format: {e}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format: {e}") from e

    def _apply_env_overrides(self) -> None:
        """Environment variables take precedence over file configuration."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is not None:
                if section not in self._raw_config or self._raw_config[section] is None:
                    self._raw_config[section] = {}
                self._raw_config[section][key] = self._convert_env_value(value, section, key)

    def _convert_env_value(self, value: str, section: str, key: str) -> Union[str, int]:
        if (section, key) in self.INT_FIELDS:
            try:
                return int(value)
            except ValueError:
                raise ValueError(
                    f"Environment variable for {section}.{key} must be an integer, got: {value}"
                )
        return value

    def save_config(
        self, config_path: Optional[Union[str, Path]] = None, format: str = 'yaml'
    ) -> None:
        """
        Save current configuration to file.

        Raises:
            ValueError: If no configuration is loaded or format is invalid
        """
        if not self._config:
            raise ValueError("No configuration loaded to save")

        save_path = Path(config_path) if config_path else self._config_path
        if not save_path:
            raise ValueError("No save path specified")

        save_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = self._config.model_dump(mode='json')

        with open(save_path, 'w', encoding='utf-8') as f:
            if format.lower() in ['yaml', 'yml']:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
            elif format.lower() == 'json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}. Use 'yaml' or 'json'")

    def get_config(self) -> StratLabConfig:
        """
        Get the current configuration.

        Raises:
            ValueError: If no configuration is loaded
        """
        if not self._config:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    @classmethod
    def create_default_config(cls, config_path: Union[str, Path]) -> StratLabConfig:
        """Write a default configuration file and return it."""
        config_path = Path(config_path)
        manager = cls()
        manager._config = StratLabConfig()
        manager._config_path = config_path

        format = 'yaml' if config_path.suffix in ['.yaml', '.yml'] else 'json'
        manager.save_config(format=format)

        return manager._config


def load_config(config_path: Optional[Union[str, Path]] = None) -> StratLabConfig:
    """
    Load configuration from file (or defaults plus environment overrides).

    Args:
        config_path: Path to configuration file

    Returns:
        StratLabConfig: Validated configuration object
    """
    manager = ConfigManager(config_path)
    return manager.load_config()
