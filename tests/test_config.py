from __future__ import annotations

import pytest

from pytap.config import TapConfig, parse_broker_url
from pytap.exceptions import TapConfigError


def test_parse_broker_url_variants() -> None:
    assert parse_broker_url("mqtt://broker.local:1884") == ("broker.local", 1884)
    assert parse_broker_url("mqtt://broker.local") == ("broker.local", 1883)
    assert parse_broker_url("10.0.0.5:1999") == ("10.0.0.5", 1999)
    assert parse_broker_url(" broker.local ") == ("broker.local", 1883)


def test_parse_broker_url_rejects_blank() -> None:
    with pytest.raises(TapConfigError):
        parse_broker_url("   ")


def test_defaults() -> None:
    config = TapConfig()

    assert config.heartbeat_timeout == 30.0
    assert config.heartbeat_check_interval == 10.0
    assert config.low_stock_threshold_ml == 2000.0
    assert config.keg_size_ml == 20000.0
    assert parse_broker_url(config.broker_url) == ("test.mosquitto.org", 1883)


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTAP_BROKER_URL", "mqtt://env-broker:1990")
    monkeypatch.setenv("PYTAP_HEARTBEAT_TIMEOUT", "45")
    monkeypatch.setenv("PYTAP_HTTP_PORT", "8080")
    monkeypatch.setenv("PYTAP_PERSIST_ENABLED", "no")

    config = TapConfig.from_env()

    assert config.broker_url == "mqtt://env-broker:1990"
    assert config.heartbeat_timeout == 45.0
    assert config.http_port == 8080
    assert config.persist_enabled is False


def test_from_env_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTAP_DB_URL", "sqlite:///env.db")

    config = TapConfig.from_env(db_url="sqlite://", persist_enabled=True)

    assert config.db_url == "sqlite://"
    assert config.persist_enabled is True


def test_from_env_invalid_number(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTAP_SWAP_DELAY", "soon")

    with pytest.raises(TapConfigError):
        TapConfig.from_env()


def test_non_positive_timeout_rejected() -> None:
    with pytest.raises(TapConfigError):
        TapConfig(heartbeat_timeout=0)
