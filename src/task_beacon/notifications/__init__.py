"""Notification store, unread index, persistence and event bus.

Public API:
    Notification: One record per subject
    NotificationStatus: working / completed
    NotificationStore: Authoritative table with TTL and capacity eviction
    NotificationStorage: Debounced JSON file persistence
    EventBus: Publish/subscribe fan-out with pre-serialized payloads
    NotificationEvent: Envelope delivered to bus listeners
    EventType: Kinds of events
"""

from .events import EventBus, EventType, NotificationEvent, build_payload
from .index import UnreadIndex
from .models import Notification, NotificationStatus, normalize_subject
from .storage import NotificationStorage
from .store import NotificationStore

__all__ = [
    "EventBus",
    "EventType",
    "Notification",
    "NotificationEvent",
    "NotificationStatus",
    "NotificationStorage",
    "NotificationStore",
    "UnreadIndex",
    "build_payload",
    "normalize_subject",
]
