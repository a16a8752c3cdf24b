from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .errors import ConfigError
from .params import ShutdownParameters

CONFIG_PATH_ENV = "ENVOY_DRAIN_CONFIG_PATH"
DEFAULT_STATS_METRIC = "http.envoy.downstream_cx_active"


class AdminSettings(BaseModel):
    """Where the proxy's admin interface lives."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    host: str = "localhost"
    port: int = Field(default=9901, ge=1, le=65535)
    scheme: Literal["http", "https"] = "http"
    timeout: float = Field(default=10.0, gt=0)
    stats_metric: str = Field(default=DEFAULT_STATS_METRIC, min_length=1)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


class ServerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    host: str = "0.0.0.0"
    port: int = Field(default=9001, ge=1, le=65535)
    cancel_abandoned_requests: bool = False


class DrainSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        env_prefix="ENVOY_DRAIN__",
        env_nested_delimiter="__",
        str_strip_whitespace=True,
    )

    admin: AdminSettings = Field(default_factory=AdminSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    defaults: ShutdownParameters = Field(default_factory=ShutdownParameters)
    force: bool = False
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    json_logs: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(
    path: str | Path | None = None, **overrides: Any
) -> DrainSettings:
    """Build settings from *overrides*, the environment and an optional TOML file.

    *overrides* win over everything else; nested sections are given as dicts
    (``admin={"port": 9902}``).
    """
    cfg_path = _resolve_config_path(path)
    if cfg_path is None:
        return _validate(DrainSettings, overrides, source="environment")
    if not cfg_path.is_file():
        raise ConfigError(f"Missing config file {cfg_path}.") from None

    cfg = dict(DrainSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "DrainSettingsBound",
        (DrainSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    return _validate(Bound, overrides, source=str(cfg_path))


def _validate(
    settings_cls: type[DrainSettings], overrides: dict[str, Any], *, source: str
) -> DrainSettings:
    try:
        return settings_cls(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {source}: {exc}") from exc


def _resolve_config_path(path: str | Path | None) -> Path | None:
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return None
