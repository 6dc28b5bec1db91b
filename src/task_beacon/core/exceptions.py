"""Exception hierarchy for task-beacon.

Capacity rejections at admission control are not exceptions; they are
returned as values (see ``task_beacon.server.sse.manager.Rejection``).
"""

__all__ = [
    "ConfigError",
    "PersistenceError",
    "TaskBeaconError",
]


class TaskBeaconError(Exception):
    """Base exception for all task-beacon errors."""


class ConfigError(TaskBeaconError):
    """Configuration could not be loaded or failed validation."""


class PersistenceError(TaskBeaconError):
    """Reading or writing the notifications file failed.

    Attributes:
        path: File the operation targeted, if known.

    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path
