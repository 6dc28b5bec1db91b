"""Configuration loading for task-beacon.

Configuration comes from three layers, later layers winning:
defaults in the pydantic models, an optional YAML file, and
TASK_BEACON_* environment variables.

Public API:
    load_config: Validate a dict and install it as the process-wide config.
    load_config_file: Read YAML + environment and install the result.
    get_config: Return the installed config.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from task_beacon.core.exceptions import ConfigError

from .models import Config, NotificationSettings, ServerSettings, StreamSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASK_BEACON_"

# Environment variable suffix -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MAX_COUNT": ("notifications", "max_count"),
    "TTL_SECONDS": ("notifications", "ttl_seconds"),
    "CLEANUP_INTERVAL_SECONDS": ("notifications", "cleanup_interval_seconds"),
    "DATA_DIR": ("notifications", "data_dir"),
    "GLOBAL_LIMIT": ("stream", "global_limit"),
    "PER_SOURCE_LIMIT": ("stream", "per_source_limit"),
    "KEEPALIVE_INTERVAL_SECONDS": ("stream", "keepalive_interval_seconds"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "LOG_LEVEL": ("server", "log_level"),
    "GRACEFUL_SHUTDOWN_SECONDS": ("server", "graceful_shutdown_seconds"),
}

_config: Config | None = None

__all__ = [
    "Config",
    "NotificationSettings",
    "ServerSettings",
    "StreamSettings",
    "apply_env_overrides",
    "get_config",
    "load_config",
    "load_config_file",
]


def load_config(data: Mapping[str, Any] | None = None) -> Config:
    """Validate configuration data and install it as the global config.

    Args:
        data: Raw configuration mapping (e.g. parsed YAML). None means defaults.

    Returns:
        The validated Config.

    Raises:
        ConfigError: If validation fails.

    """
    global _config

    try:
        config = Config.model_validate(dict(data or {}))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    _config = config
    logger.debug(
        "Config loaded: max_count=%d, ttl=%ss, global_limit=%d, per_source_limit=%d",
        config.notifications.max_count,
        config.notifications.ttl_seconds,
        config.stream.global_limit,
        config.stream.per_source_limit,
    )
    return config


def apply_env_overrides(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Overlay TASK_BEACON_* environment variables onto raw config data.

    Values are passed through as strings; pydantic coerces them.

    Args:
        data: Raw configuration mapping.
        environ: Environment to read (defaults to os.environ).

    Returns:
        New mapping with overrides applied.

    """
    env = os.environ if environ is None else environ
    merged: dict[str, Any] = {
        key: dict(value) if isinstance(value, Mapping) else value
        for key, value in data.items()
    }

    for suffix, (section, field) in ENV_OVERRIDES.items():
        value = env.get(ENV_PREFIX + suffix)
        if value is None or value == "":
            continue
        section_data = merged.get(section)
        if not isinstance(section_data, dict):
            section_data = {}
            merged[section] = section_data
        section_data[field] = value

    return merged


def load_config_file(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from a YAML file plus environment overrides.

    A missing file is not an error; defaults and environment still apply.

    Args:
        path: YAML file to read, or None for environment-only configuration.
        environ: Environment to read (defaults to os.environ).

    Returns:
        The validated Config.

    Raises:
        ConfigError: If the file cannot be parsed or validation fails.

    """
    data: dict[str, Any] = {}

    if path is not None:
        path = path.expanduser()
        if path.exists():
            try:
                with path.open(encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Failed to read config file {path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigError(f"Config file {path} must contain a mapping")
            data = loaded
            logger.info("Loaded config file %s", path)
        else:
            logger.info("Config file %s not found, using defaults", path)

    return load_config(apply_env_overrides(data, environ))


def get_config() -> Config:
    """Return the installed configuration.

    Raises:
        ConfigError: If no configuration has been loaded yet.

    """
    if _config is None:
        raise ConfigError("Config not loaded. Call load_config() first.")
    return _config


def _reset_config() -> None:
    """Reset the global config (test hook)."""
    global _config
    _config = None
