"""Configuration models for task-beacon."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

# XDG-style data location for the notifications file
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "task-beacon"
DEFAULT_NOTIFICATIONS_FILE = "notifications.json"

DEFAULT_MAX_COUNT = 1000
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60 * 60
DEFAULT_SAVE_DEBOUNCE_SECONDS = 1.0

DEFAULT_GLOBAL_LIMIT = 100
DEFAULT_PER_SOURCE_LIMIT = 5
DEFAULT_KEEPALIVE_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_QUEUE_SIZE = 1000

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8090
DEFAULT_GRACEFUL_SHUTDOWN_SECONDS = 5.0


class NotificationSettings(BaseModel):
    """Notification store configuration.

    Attributes:
        max_count: Maximum number of live notifications kept after cleanup.
        ttl_seconds: Age after which a notification is removed regardless of capacity.
        cleanup_interval_seconds: Period of the background cleanup task.
        save_debounce_seconds: Window in which save requests collapse into one write.
        data_dir: Directory holding the notifications file.
        file_name: Name of the notifications file inside data_dir.

    """

    model_config = ConfigDict(frozen=True)

    max_count: int = Field(default=DEFAULT_MAX_COUNT, ge=1)
    ttl_seconds: float = Field(default=DEFAULT_TTL_SECONDS, ge=1)
    cleanup_interval_seconds: float = Field(default=DEFAULT_CLEANUP_INTERVAL_SECONDS, ge=1)
    save_debounce_seconds: float = Field(default=DEFAULT_SAVE_DEBOUNCE_SECONDS, gt=0)
    data_dir: Path = Field(default=DEFAULT_DATA_DIR)
    file_name: str = Field(default=DEFAULT_NOTIFICATIONS_FILE, min_length=1)

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: object) -> object:
        """Expand ~ in configured data directories."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    @property
    def file_path(self) -> Path:
        """Full path of the notifications file."""
        return self.data_dir / self.file_name


class StreamSettings(BaseModel):
    """SSE connection limits and keepalive.

    Attributes:
        global_limit: Maximum simultaneous streaming connections.
        per_source_limit: Maximum simultaneous connections from one client address.
        keepalive_interval_seconds: Period between keepalive comments.
        max_queue_size: Frames buffered per connection before the oldest is dropped.

    """

    model_config = ConfigDict(frozen=True)

    global_limit: int = Field(default=DEFAULT_GLOBAL_LIMIT, ge=1)
    per_source_limit: int = Field(default=DEFAULT_PER_SOURCE_LIMIT, ge=1)
    keepalive_interval_seconds: float = Field(default=DEFAULT_KEEPALIVE_INTERVAL_SECONDS, ge=1)
    max_queue_size: int = Field(default=DEFAULT_MAX_QUEUE_SIZE, ge=1)


class ServerSettings(BaseModel):
    """HTTP server binding, log level and shutdown grace period.

    Attributes:
        graceful_shutdown_seconds: How long uvicorn waits for open requests
            after the exit signal before cancelling them.

    """

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    log_level: Literal["debug", "info", "warning", "error"] = "info"
    graceful_shutdown_seconds: float = Field(default=DEFAULT_GRACEFUL_SHUTDOWN_SECONDS, gt=0)

    @field_validator("log_level", mode="before")
    @classmethod
    def lowercase_log_level(cls, v: object) -> object:
        """Accept log levels in any case (INFO, Info, info)."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class Config(BaseModel):
    """Root configuration.

    Example:
        >>> config = Config.model_validate({"stream": {"global_limit": 10}})
        >>> config.stream.global_limit
        10
        >>> config.notifications.max_count
        1000

    """

    model_config = ConfigDict(frozen=True)

    server: ServerSettings = Field(default_factory=ServerSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    stream: StreamSettings = Field(default_factory=StreamSettings)

    @field_validator("server", "notifications", "stream", mode="before")
    @classmethod
    def coerce_none_to_empty(cls, v: object) -> object:
        """YAML parses an empty section as None."""
        if v is None:
            return {}
        return v
