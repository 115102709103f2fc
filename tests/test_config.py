import pytest

from stratlab.config.config_manager import (
    ConfigManager,
    ExecutionMode,
    LogLevel,
    StratLabConfig,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ConfigManager.ENV_MAPPINGS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file(tmp_path):
    config = ConfigManager(env_file=str(tmp_path / "missing.env")).load_config()
    assert isinstance(config, StratLabConfig)
    assert config.optimizer.top_n == 10
    assert config.paper_trading.execution_mode is ExecutionMode.SYNC
    assert config.backtest.execution_price == "next_open"
    assert config.portfolio.history_interval == "15m"


def test_yaml_file_and_env_override(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "optimizer:\n"
        "  top_n: 3\n"
        "  workers: 1\n"
        "paper_trading:\n"
        "  execution_mode: edge\n"
        "database:\n"
        "  db_path: from_file.db\n"
    )
    monkeypatch.setenv("STRATLAB_WORKERS", "4")
    monkeypatch.setenv("STRATLAB_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("STRATLAB_LOG_LEVEL", "DEBUG")

    config = ConfigManager(path, env_file=str(tmp_path / "missing.env")).load_config()
    assert config.optimizer.top_n == 3
    assert config.optimizer.workers == 4
    assert config.paper_trading.execution_mode is ExecutionMode.EDGE
    assert config.database.db_path == str(tmp_path / "env.db")
    assert config.logging.level is LogLevel.DEBUG


def test_invalid_values_rejected(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text('{"portfolio": {"history_interval": "7m"}}')
    with pytest.raises(ValueError):
        ConfigManager(path, env_file=str(tmp_path / "missing.env")).load_config()

    monkeypatch.setenv("STRATLAB_WORKERS", "many")
    with pytest.raises(ValueError):
        ConfigManager(env_file=str(tmp_path / "missing.env")).load_config()


def test_missing_and_unsupported_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(tmp_path / "nope.yaml").load_config()

    path = tmp_path / "config.toml"
    path.write_text("x = 1")
    with pytest.raises(ValueError):
        ConfigManager(path).load_config()


def test_save_and_reload(tmp_path):
    manager = ConfigManager(env_file=str(tmp_path / "missing.env"))
    config = manager.load_config()
    config.optimizer.iterations = 7
    target = tmp_path / "saved.yaml"
    manager.save_config(target)

    reloaded = ConfigManager(target, env_file=str(tmp_path / "missing.env")).load_config()
    assert reloaded.optimizer.iterations == 7
