"""App configuration loading helpers."""

from __future__ import annotations

import os
from pathlib import Path

import tomllib

from pydantic import BaseModel

CONFIG_ENV_VAR = "XMLCONNECT_CONFIG"
CONFIG_FILE = Path.home() / ".config" / "xmlconnect" / "config.toml"
PACKAGED_SCHEMA = Path(__file__).resolve().parent / "schemas" / "server_config_validation.xsd"
DEFAULT_SECRET_KEY = "change-me"


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    error_url: str = "/error"
    session_key: str = "ERROR"
    schema_path: Path | None = None
    secret_key: str = DEFAULT_SECRET_KEY
    log_level: str = "INFO"
    connect_timeout: float = 5.0
    database_config: Path | None = None

    def resolved_schema_path(self) -> Path:
        """Schema used to validate connection configs."""

        return self.schema_path or PACKAGED_SCHEMA

    def with_updates(self, **updates: object) -> AppConfig:
        """Return a copy with the given fields replaced."""

        return self.model_copy(update=updates)


def config_path() -> Path:
    """Location of the config file, honouring the environment override."""

    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if override:
        return Path(override)
    return CONFIG_FILE


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file(path or config_path())
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    return AppConfig(**data)


def _read_config_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    if not isinstance(raw, dict):
        return data
    for key in ("error_url", "session_key", "secret_key"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            data[key] = value
    log_level = raw.get("log_level")
    if isinstance(log_level, str) and log_level:
        data["log_level"] = log_level.upper()
    timeout = raw.get("connect_timeout")
    if isinstance(timeout, (int, float)) and not isinstance(timeout, bool) and timeout > 0:
        data["connect_timeout"] = float(timeout)
    for key in ("schema_path", "database_config"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            candidate = Path(value).expanduser()
            if not candidate.is_absolute():
                candidate = path.parent / candidate
            data[key] = candidate
    return data


__all__ = ["AppConfig", "CONFIG_FILE", "PACKAGED_SCHEMA", "config_path", "load_config"]
