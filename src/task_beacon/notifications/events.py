"""Process-wide publish/subscribe bus for notification events.

Each event's client payload is serialized to JSON once, in publish(), and
the resulting string travels in the envelope. With hundreds of streaming
connections listening, this avoids one json.dumps per connection per
event.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from .models import Notification

logger = logging.getLogger(__name__)

# Headroom above the streaming connection limit before warning about leaks
LISTENER_WARNING_BUFFER = 20


class EventType(StrEnum):
    """Kinds of notification events."""

    CREATED = "created"
    WORKING = "working"
    COMPLETED = "completed"
    READ = "read"
    REMOVED = "removed"
    CLEARED_ALL = "cleared_all"


# Event types that leave an active notification behind
ACTIVE_EVENT_TYPES = frozenset({EventType.CREATED, EventType.WORKING, EventType.COMPLETED})


@dataclass(frozen=True)
class NotificationEvent:
    """Envelope delivered to bus listeners.

    Attributes:
        subject: Subject the event concerns, or None for broadcast events
            (cleared_all).
        type: Event type.
        serialized_payload: JSON client payload, serialized once per event.
        notification: Record after the mutation, when one exists.
        count: Number of records affected (cleared_all only).

    """

    subject: str | None
    type: EventType
    serialized_payload: str
    notification: Notification | None = None
    count: int | None = None


Listener = Callable[[NotificationEvent], None]


def build_payload(
    event_type: EventType,
    notification: Notification | None = None,
) -> tuple[dict[str, Any], str]:
    """Build the client-facing payload and its JSON serialization.

    Args:
        event_type: Event type.
        notification: Record to describe (omitted for removals).

    Returns:
        Tuple of (payload dict, serialized JSON string).

    """
    payload: dict[str, Any] = {
        "hasNotification": event_type in ACTIVE_EVENT_TYPES,
        "type": event_type.value,
    }
    if notification is not None:
        payload["timestamp"] = notification.timestamp
        payload["message"] = notification.message
        payload["status"] = notification.status.value
        if notification.metadata:
            payload["metadata"] = notification.metadata

    return payload, json.dumps(payload, separators=(",", ":"))


class EventBus:
    """Synchronous fan-out to registered listeners.

    Listeners run in registration order on the publisher's call stack. A
    listener that raises is logged and skipped; the remaining listeners
    still receive the event and publish() never raises.

    Attributes:
        max_listeners: Soft ceiling; exceeding it logs a possible-leak warning.

    """

    def __init__(self, max_listeners: int | None = None) -> None:
        """Initialize the bus.

        Args:
            max_listeners: Listener count above which a warning is logged
                (None disables the check).

        """
        self.max_listeners = max_listeners
        self._listeners: list[Listener] = []
        self._warned = False

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register a listener.

        Args:
            callback: Called with every published NotificationEvent.

        Returns:
            Function removing exactly this registration. Calling it more
            than once is a no-op.

        """
        self._listeners.append(callback)

        if (
            self.max_listeners is not None
            and len(self._listeners) > self.max_listeners
            and not self._warned
        ):
            self._warned = True
            logger.warning(
                "Event bus has %d listeners (max %d), possible listener leak",
                len(self._listeners),
                self.max_listeners,
            )

        subscribed = True

        def unsubscribe() -> None:
            nonlocal subscribed
            if not subscribed:
                return
            subscribed = False
            # Remove this registration only, even if the same callable was added twice
            for idx, listener in enumerate(self._listeners):
                if listener is callback:
                    del self._listeners[idx]
                    break

        return unsubscribe

    def listener_count(self) -> int:
        """Number of registered listeners."""
        return len(self._listeners)

    def _dispatch(self, event: NotificationEvent) -> None:
        # Snapshot so listeners may unsubscribe while being notified
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Notification listener failed for %s event on %s",
                    event.type.value,
                    event.subject,
                )

    def publish(
        self,
        subject: str,
        event_type: EventType,
        notification: Notification | None = None,
    ) -> None:
        """Publish an event for one subject.

        Args:
            subject: Subject the event concerns.
            event_type: Event type.
            notification: Current record (omit for removals).

        """
        _, serialized = build_payload(event_type, notification)
        self._dispatch(
            NotificationEvent(
                subject=subject,
                type=event_type,
                serialized_payload=serialized,
                notification=notification,
            )
        )

    def publish_cleared_all(self, count: int) -> None:
        """Publish a broadcast event after every notification was removed.

        Args:
            count: Number of notifications removed.

        """
        payload = {"hasNotification": False, "type": EventType.CLEARED_ALL.value, "count": count}
        self._dispatch(
            NotificationEvent(
                subject=None,
                type=EventType.CLEARED_ALL,
                serialized_payload=json.dumps(payload, separators=(",", ":")),
                count=count,
            )
        )
