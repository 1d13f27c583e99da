"""Runtime settings read from the environment (and .env, see package init)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


class SettingsError(Exception):
    """Raised when an environment setting has an invalid value."""

    pass


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_API_BASE = "http://localhost:8080"
DEFAULT_RECONNECT_DELAY = 2.0
DEFAULT_COMMAND_TIMEOUT = 5.0


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise SettingsError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise SettingsError(f"{name} must not be negative, got {raw!r}")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Process-wide runtime settings."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    api_base: str = DEFAULT_API_BASE
    config_path: Path | None = None
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    log_file: Path | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from VIBECAST_* environment variables.

        Raises:
            SettingsError: If a numeric variable cannot be parsed
        """
        config_path = os.environ.get("VIBECAST_CONFIG")
        log_file = os.environ.get("VIBECAST_LOG_FILE")
        return cls(
            host=os.environ.get("VIBECAST_HOST", DEFAULT_HOST),
            port=_int_env("VIBECAST_PORT", DEFAULT_PORT),
            api_base=os.environ.get("VIBECAST_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            config_path=Path(config_path) if config_path else None,
            reconnect_delay=_float_env("VIBECAST_RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY),
            command_timeout=_float_env("VIBECAST_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT),
            log_file=Path(log_file) if log_file else None,
        )
