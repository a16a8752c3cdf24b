from __future__ import annotations

from pathlib import Path

import pytest

from envoy_drain.errors import ConfigError
from envoy_drain.settings import (
    CONFIG_PATH_ENV,
    AdminSettings,
    DrainSettings,
    ServerSettings,
    load_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    for name in (
        "ENVOY_DRAIN__FORCE",
        "ENVOY_DRAIN__ADMIN__PORT",
        "ENVOY_DRAIN__SERVER__PORT",
        "ENVOY_DRAIN__DEFAULTS__PERIOD",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_original_flags() -> None:
    settings = load_settings()
    assert settings.admin.base_url == "http://localhost:9901"
    assert settings.server.port == 9001
    assert settings.defaults.delay == 0
    assert settings.defaults.period == 5
    assert settings.defaults.deadline == 300
    assert settings.force is False


def test_port_range_validation() -> None:
    with pytest.raises(ValueError):
        AdminSettings(port=0)
    with pytest.raises(ValueError):
        ServerSettings(port=70000)


def test_load_settings_from_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "envoy-drain.toml"
    config_path.write_text(
        "force = true\n\n"
        "[admin]\n"
        'host = "127.0.0.1"\n'
        'scheme = "https"\n\n'
        "[defaults]\n"
        "delay = 10\n"
        "period = 2\n"
        "deadline = 60\n",
        encoding="utf-8",
    )

    settings = load_settings(config_path)

    assert settings.force is True
    assert settings.admin.base_url == "https://127.0.0.1:9901"
    assert settings.defaults.delay == 10
    assert settings.defaults.deadline == 60


def test_config_path_from_env(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "envoy-drain.toml"
    config_path.write_text("[server]\nport = 9100\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_PATH_ENV, str(config_path))

    settings = load_settings()

    assert settings.server.port == 9100


def test_env_overrides_toml(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "envoy-drain.toml"
    config_path.write_text("[admin]\nport = 9902\n", encoding="utf-8")
    monkeypatch.setenv("ENVOY_DRAIN__ADMIN__PORT", "9903")

    settings = load_settings(config_path)

    assert settings.admin.port == 9903


def test_overrides_win_and_merge(tmp_path: Path) -> None:
    config_path = tmp_path / "envoy-drain.toml"
    config_path.write_text(
        '[admin]\nhost = "envoy"\nport = 9902\n', encoding="utf-8"
    )

    settings = load_settings(config_path, admin={"port": 9904})

    assert settings.admin.host == "envoy"
    assert settings.admin.port == 9904


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Missing config file"):
        load_settings(tmp_path / "nope.toml")


def test_inconsistent_defaults_rejected() -> None:
    with pytest.raises(ConfigError, match="deadline"):
        load_settings(defaults={"delay": 5, "period": 5, "deadline": 9})


def test_unknown_key_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "envoy-drain.toml"
    config_path.write_text("[admin]\nhostname = \"x\"\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(config_path)


def test_settings_model_direct() -> None:
    settings = DrainSettings(force=True)
    assert settings.force is True


def test_ports_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ENVOY_DRAIN__SERVER__PORT", "9100")
    monkeypatch.setenv("ENVOY_DRAIN__ADMIN__PORT", "19000")

    settings = load_settings()

    assert settings.server.port == 9100
    assert settings.admin.port == 19000


def test_out_of_range_port_from_env(monkeypatch) -> None:
    monkeypatch.setenv("ENVOY_DRAIN__SERVER__PORT", "70000")
    with pytest.raises(ConfigError):
        load_settings()
