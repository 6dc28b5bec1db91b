"""HTTP client for the producer side.

Used by the CLI (typically from an editor or agent hook) to report task
state to a running task-beacon server.
"""

import logging
from typing import Any

import httpx

from task_beacon.core.exceptions import TaskBeaconError

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:8090"
DEFAULT_TIMEOUT = 5.0


class ClientError(TaskBeaconError):
    """The server could not be reached or answered with an error.

    Attributes:
        status_code: HTTP status, or None if no response was received.

    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BeaconClient:
    """Thin synchronous wrapper over the notification API.

    Example:
        >>> with BeaconClient("http://127.0.0.1:8090") as client:
        ...     client.completed("/work/app", "Build finished")

    """

    def __init__(
        self,
        base_url: str = DEFAULT_SERVER_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> "BeaconClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ClientError(f"Cannot reach task-beacon server: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            message = data.get("error") if isinstance(data, dict) else None
            raise ClientError(
                message or f"Server returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        logger.debug("%s %s -> %d", method, path, response.status_code)
        return data if isinstance(data, dict) else {"data": data}

    def started(self, folder: str, message: str | None = None) -> dict[str, Any]:
        """Report that a task for the folder has started."""
        body: dict[str, Any] = {"folder": folder}
        if message:
            body["message"] = message
        return self._request("POST", "/api/notifications/started", json=body)

    def completed(
        self,
        folder: str,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Report that a task for the folder has finished."""
        body: dict[str, Any] = {"folder": folder}
        if message:
            body["message"] = message
        if metadata:
            body["metadata"] = metadata
        return self._request("POST", "/api/notifications/completed", json=body)

    def status(self, folder: str) -> dict[str, Any]:
        """Current notification state for a folder."""
        return self._request("GET", "/api/notifications/status", params={"folder": folder})

    def mark_read(self, folder: str) -> dict[str, Any]:
        """Mark a folder's notification read."""
        return self._request("POST", "/api/notifications/mark-read", json={"folder": folder})

    def clear(self, folder: str) -> dict[str, Any]:
        """Remove a folder's notification."""
        return self._request("DELETE", "/api/notifications", params={"folder": folder})

    def clear_all(self) -> dict[str, Any]:
        """Remove every notification."""
        return self._request("DELETE", "/api/notifications/all")

    def unread(self) -> dict[str, Any]:
        """All unread completed notifications."""
        return self._request("GET", "/api/notifications/unread")

    def health(self) -> dict[str, Any]:
        """Server health and statistics."""
        return self._request("GET", "/health")
