"""Environment-driven settings for the staking exporter.

Every value has a default, and a malformed value silently falls back to it
so a typo in the environment never prevents the exporter from starting.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, TypeVar

T = TypeVar("T")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _env(name: str, default: T, convert: Callable[[str], T]) -> T:
    raw = os.getenv(name)

    if raw is None:
        return default

    try:
        return convert(raw)
    except ValueError:
        return default


def _parse_bool(raw: str) -> bool:
    normalized = raw.strip().lower()

    if normalized in _TRUE_VALUES:
        return True

    if normalized in _FALSE_VALUES:
        return False

    raise ValueError(f"Not a boolean: {raw!r}")


@dataclass(slots=True)
class LoggingSettings:
    level: str
    format: str
    color_enabled: bool


@dataclass(slots=True)
class PollerSettings:
    default_interval: str
    max_failure_backoff_seconds: int
    rpc_request_timeout_seconds: float
    rpc_max_attempts: int


@dataclass(slots=True)
class HealthSettings:
    readiness_stale_threshold_seconds: int


@dataclass(slots=True)
class ServerSettings:
    host: str
    health_port: int
    metrics_port: int


@dataclass(slots=True)
class ConfigSettings:
    config_path_env: str | None
    default_config_filename: str

    def resolve_config_path(self) -> Path:
        """Return the config file path; a directory in the env var means ``<dir>/config.toml``."""

        if not self.config_path_env:
            return Path.cwd().joinpath(self.default_config_filename).resolve()

        configured = Path(self.config_path_env).expanduser().resolve()

        return configured.joinpath(self.default_config_filename) if configured.is_dir() else configured


@dataclass(slots=True)
class AppSettings:
    logging: LoggingSettings
    poller: PollerSettings
    health: HealthSettings
    server: ServerSettings
    config: ConfigSettings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings(
        logging=LoggingSettings(
            level=_env("LOG_LEVEL", "INFO", str.upper),
            format=_env("LOG_FORMAT", "text", str.lower),
            color_enabled=_env("LOG_COLOR_ENABLED", True, _parse_bool),
        ),
        poller=PollerSettings(
            default_interval=_env("POLL_DEFAULT_INTERVAL", "30s", str.strip),
            max_failure_backoff_seconds=_env("MAX_FAILURE_BACKOFF_SECONDS", 300, int),
            rpc_request_timeout_seconds=_env("RPC_REQUEST_TIMEOUT_SECONDS", 10.0, float),
            rpc_max_attempts=max(_env("RPC_MAX_ATTEMPTS", 2, int), 1),
        ),
        health=HealthSettings(
            readiness_stale_threshold_seconds=_env("READINESS_STALE_THRESHOLD_SECONDS", 300, int),
        ),
        server=ServerSettings(
            host=_env("BIND_HOST", "0.0.0.0", str.strip),
            health_port=_env("HEALTH_PORT", 8080, int),
            metrics_port=_env("METRICS_PORT", 9100, int),
        ),
        config=ConfigSettings(
            config_path_env=os.getenv("STAKING_EXPORTER_CONFIG_PATH"),
            default_config_filename="config.toml",
        ),
    )


__all__ = [
    "AppSettings",
    "ConfigSettings",
    "HealthSettings",
    "LoggingSettings",
    "PollerSettings",
    "ServerSettings",
    "get_settings",
]
