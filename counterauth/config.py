"""Configuration management for the session counter service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .database import DEFAULT_POOL_SIZE, DEFAULT_POOL_TIMEOUT, resolve_database_path

DEFAULT_SESSION_MINUTES = 24 * 60
DEFAULT_SWEEP_INTERVAL = 60.0

_ENV_FIELDS: Dict[str, str] = {
    "COUNTER_DB_PATH": "database_path",
    "COUNTER_DB_POOL_SIZE": "pool_size",
    "COUNTER_DB_POOL_TIMEOUT": "pool_timeout",
    "COUNTER_SESSION_MINUTES": "default_session_minutes",
    "COUNTER_SESSION_MAX_MINUTES": "max_session_minutes",
    "COUNTER_SWEEP_INTERVAL": "sweep_interval_seconds",
    "COUNTER_SESSION_SECURE": "secure_cookies",
    "COUNTER_HOST": "host",
    "PORT": "port",
    "COUNTER_LOG_LEVEL": "log_level",
}


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the web service, sweeper, and database."""

    database_path: Path
    pool_size: int = DEFAULT_POOL_SIZE
    pool_timeout: float = DEFAULT_POOL_TIMEOUT
    default_session_minutes: int = DEFAULT_SESSION_MINUTES
    max_session_minutes: int = DEFAULT_SESSION_MINUTES
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL
    secure_cookies: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.default_session_minutes < 1:
            raise ValueError("default_session_minutes must be at least 1")
        if self.max_session_minutes < self.default_session_minutes:
            raise ValueError("max_session_minutes must not be lower than default_session_minutes")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw (YAML or environment) values."""

        unknown = set(data) - set(_ENV_FIELDS.values())
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: Dict[str, object] = {
            "database_path": resolve_database_path(
                str(data["database_path"]) if data.get("database_path") else None
            )
        }
        if "pool_size" in data:
            kwargs["pool_size"] = int(data["pool_size"])  # type: ignore[arg-type]
        if "pool_timeout" in data:
            kwargs["pool_timeout"] = float(data["pool_timeout"])  # type: ignore[arg-type]
        if "default_session_minutes" in data:
            kwargs["default_session_minutes"] = int(data["default_session_minutes"])  # type: ignore[arg-type]
        if "max_session_minutes" in data:
            kwargs["max_session_minutes"] = int(data["max_session_minutes"])  # type: ignore[arg-type]
        elif "default_session_minutes" in data:
            kwargs["max_session_minutes"] = max(
                DEFAULT_SESSION_MINUTES, int(kwargs["default_session_minutes"])  # type: ignore[arg-type]
            )
        if "sweep_interval_seconds" in data:
            kwargs["sweep_interval_seconds"] = float(data["sweep_interval_seconds"])  # type: ignore[arg-type]
        if "secure_cookies" in data:
            raw = data["secure_cookies"]
            kwargs["secure_cookies"] = raw if isinstance(raw, bool) else _env_flag(str(raw))
        if "host" in data:
            kwargs["host"] = str(data["host"])
        if "port" in data:
            kwargs["port"] = int(data["port"])  # type: ignore[arg-type]
        if "log_level" in data:
            kwargs["log_level"] = str(data["log_level"]).upper()
        return Settings(**kwargs)  # type: ignore[arg-type]

    def session_minutes(self, requested: object) -> int:
        """Clamp a client-requested session lifetime to the server policy."""

        try:
            minutes = int(str(requested).strip())
        except (TypeError, ValueError):
            return self.default_session_minutes
        if minutes < 1:
            return self.default_session_minutes
        return min(minutes, self.max_session_minutes)


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load settings from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping of settings")
    return dict(raw)


def _merge_env_file(environ: Mapping[str, str], env_file: Optional[Path]) -> Dict[str, str]:
    merged: Dict[str, str] = {}
    if env_file is not None and env_file.is_file():
        for name, value in dotenv_values(env_file).items():
            if value is not None:
                merged[name] = value
    merged.update(environ)
    return merged


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    env_file: Optional[Path] = None,
    **overrides: object,
) -> Settings:
    """Build settings from ``.env``, ``COUNTER_CONFIG`` (YAML) and ``COUNTER_*`` variables.

    Values from ``env_file`` (``./.env`` when reading the process environment) only
    fill variables the environment does not already define. Environment variables
    take precedence over the YAML file; keyword overrides take precedence over both.
    """

    if environ is None:
        environ = os.environ
        if env_file is None:
            env_file = Path(".env")
    env = _merge_env_file(environ, env_file)
    data: Dict[str, object] = {}

    config_file = env.get("COUNTER_CONFIG")
    if config_file:
        data.update(load_config_file(Path(config_file).expanduser()))

    for variable, field in _ENV_FIELDS.items():
        value = env.get(variable)
        if value is not None and value.strip():
            data[field] = value.strip()

    settings = Settings.from_dict(data)
    if overrides:
        settings = replace(settings, **overrides)
    return settings


__all__ = ["Settings", "load_config_file", "load_settings"]
