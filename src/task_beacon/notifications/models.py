"""Notification record and subject normalization."""

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NotificationStatus(StrEnum):
    """Lifecycle of the background task a notification describes."""

    WORKING = "working"
    COMPLETED = "completed"


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def normalize_subject(subject: str) -> str:
    """Normalize a subject (project path) into its table key.

    Strips surrounding whitespace and trailing path separators, then
    casefolds so that "/Work/App/" and "/work/app" share one record.

    Args:
        subject: Raw subject as sent by the producer.

    Returns:
        Normalized key.

    Raises:
        ValueError: If the subject is empty after stripping.

    """
    key = subject.strip()
    stripped = key.rstrip("/\\")
    key = stripped or key[:1]
    if not key:
        raise ValueError("Subject must not be empty")
    return key.casefold()


@dataclass
class Notification:
    """One notification per subject.

    Attributes:
        subject: Normalized subject key.
        message: Human-readable message shown in the UI.
        status: working or completed.
        timestamp: Creation/update time in epoch milliseconds.
        unread: False once the user has seen it.
        metadata: Optional opaque producer data (files changed, tools used, ...).

    """

    subject: str
    message: str
    status: NotificationStatus
    timestamp: int
    unread: bool = True
    metadata: dict[str, Any] | None = field(default=None)

    @property
    def is_unread_completed(self) -> bool:
        """Whether this record belongs in the unread index."""
        return self.unread and self.status == NotificationStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence."""
        data: dict[str, Any] = {
            "subject": self.subject,
            "message": self.message,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "unread": self.unread,
        }
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], subject: str | None = None) -> "Notification":
        """Deserialize a persisted record.

        Older files keyed records by folder and stored the path under
        "folder"; both spellings are accepted.

        Args:
            data: Persisted record.
            subject: Table key the record was stored under, used as fallback.

        Returns:
            Notification instance.

        Raises:
            ValueError: If the record has no usable subject or timestamp.

        """
        raw_subject = data.get("subject") or data.get("folder") or subject
        if not raw_subject:
            raise ValueError("Notification record has no subject")

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, int | float) or isinstance(timestamp, bool):
            raise ValueError(f"Notification record has invalid timestamp: {timestamp!r}")

        metadata = data.get("metadata")
        return cls(
            subject=normalize_subject(str(raw_subject)),
            message=str(data.get("message") or "Task completed"),
            status=NotificationStatus(data.get("status") or NotificationStatus.COMPLETED),
            timestamp=int(timestamp),
            unread=bool(data.get("unread", True)),
            metadata=metadata if isinstance(metadata, dict) else None,
        )

    def to_status_payload(self) -> dict[str, Any]:
        """Payload describing this record to a UI client."""
        payload: dict[str, Any] = {
            "hasNotification": True,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "message": self.message,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload
