"""Configuration management for familycal."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "familycal"


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue

        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class FamilyCalSettings(BaseModel):
    """Validated runtime settings.

    Components read these with ``getattr(settings, name, default)`` so any
    object exposing the same attribute names (for example a SimpleNamespace in
    tests) can stand in for this model.
    """

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Directory for persisted state")
    request_timeout: float = Field(default=15.0, gt=0, description="Per-attempt fetch timeout (s)")
    relays_enabled: bool = Field(default=True, description="Fall back to relay services")
    relay_failure_threshold: int = Field(default=3, ge=1)
    relay_cooldown_seconds: float = Field(default=300.0, ge=0)
    default_timezone: str = Field(default="UTC", description="Timezone used to date timed events")
    server_bind: str = Field(default="127.0.0.1")
    server_port: int = Field(default=8080, ge=1, le=65535)
    log_level: str = Field(default="INFO")

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        import zoneinfo

        try:
            zoneinfo.ZoneInfo(v)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    # env var -> (config key, converter)
    _ENV_MAP: dict[str, tuple[str, Any]] = {
        "FAMILYCAL_DATA_DIR": ("data_dir", Path),
        "FAMILYCAL_REQUEST_TIMEOUT": ("request_timeout", float),
        "FAMILYCAL_RELAYS_ENABLED": ("relays_enabled", _env_bool),
        "FAMILYCAL_RELAY_FAILURE_THRESHOLD": ("relay_failure_threshold", int),
        "FAMILYCAL_RELAY_COOLDOWN_SECONDS": ("relay_cooldown_seconds", float),
        "FAMILYCAL_DEFAULT_TIMEZONE": ("default_timezone", str),
        "FAMILYCAL_SERVER_BIND": ("server_bind", str),
        "FAMILYCAL_SERVER_PORT": ("server_port", int),
        "FAMILYCAL_LOG_LEVEL": ("log_level", str),
    }

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from FAMILYCAL_* environment variables.

        Values that fail conversion are logged and ignored so a typo in one
        variable does not prevent startup.
        """
        cfg: dict[str, Any] = {}

        for env_name, (key, convert) in self._ENV_MAP.items():
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                cfg[key] = convert(raw)
            except (TypeError, ValueError):
                logger.warning("Invalid %s=%r; ignoring", env_name, raw)

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment."""
        self.load_env_file()
        return self.build_config_from_env()

    def load_settings(self) -> FamilyCalSettings:
        """Load configuration and validate it into a settings model."""
        return FamilyCalSettings(**self.load_full_config())


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and attribute-style objects."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
