import pytest
from pydantic import ValidationError

from snbloader.shared.config import (
    LoaderConfig,
    Settings,
    TransactionConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def _no_config_path(monkeypatch):
    monkeypatch.delenv("CONFIG_PATH", raising=False)


def _write_yaml(tmp_path, text):
    path = tmp_path / "loader.yaml"
    path.write_text(text)
    return path


def test_defaults_without_file():
    config, settings = load_config()
    assert config.num_loaders == 1
    assert config.loader_idx == 0
    assert config.num_threads == 1
    assert config.tx == TransactionConfig(
        size=128, retries=10, backoff_ms=1000, backoff_ceiling_ms=10000
    )
    assert config.report.interval_seconds == 10
    assert config.report.format == "LFDT"
    assert settings.neo4j_uri == "bolt://localhost:7687"


def test_yaml_then_overrides(tmp_path):
    path = _write_yaml(
        tmp_path,
        "loader:\n  num_threads: 4\n  tx:\n    size: 64\n    retries: 3\n",
    )

    config, _ = load_config(str(path), {"tx": {"size": 256}, "num_loaders": 2})

    assert config.num_threads == 4
    assert config.num_loaders == 2
    assert config.tx.size == 256
    assert config.tx.retries == 3


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = _write_yaml(tmp_path, "loader:\n  report:\n    format: Ll\n")
    monkeypatch.setenv("CONFIG_PATH", str(path))

    config, settings = load_config()

    assert settings.config_path == str(path)
    assert config.report.format == "Ll"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))


def test_file_must_hold_a_mapping(tmp_path):
    path = _write_yaml(tmp_path, "- just\n- a list\n")
    with pytest.raises(ValueError, match="must contain a mapping"):
        load_config(str(path))


@pytest.mark.parametrize(
    "overrides",
    [
        {"loader_idx": 1},
        {"num_threads": 0},
        {"tx": {"size": 0}},
        {"tx": {"backoff_ms": 5000, "backoff_ceiling_ms": 100}},
        {"report": {"interval_seconds": 0}},
        {"unknown_option": True},
    ],
)
def test_invalid_values_raise_value_error(overrides):
    with pytest.raises(ValueError, match="Invalid loader configuration"):
        load_config(overrides=overrides)


def test_loader_idx_checked_on_assignment():
    config = LoaderConfig(num_loaders=2, loader_idx=1)
    with pytest.raises(ValidationError):
        config.num_loaders = 1


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("NEO4J_URI", "bolt://graph:7687")
    monkeypatch.setenv("NEO4J_DATABASE", "snb")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("METRICS_PORT", "9108")

    settings = Settings(_env_file=None)

    assert settings.neo4j_uri == "bolt://graph:7687"
    assert settings.neo4j_database == "snb"
    assert settings.log_level == "DEBUG"
    assert settings.metrics_port == 9108


def test_settings_require_password(monkeypatch):
    monkeypatch.delenv("NEO4J_PASSWORD", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_settings_reject_unknown_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "loud")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
