"""Authoritative notification store.

Owns the subject -> Notification table and its unread index, persists the
table through NotificationStorage, and publishes every change on the
EventBus for streaming clients.

Mutations (upsert, mark_read, remove, remove_all) are synchronous and never
await between reading and writing the table, so they appear atomic to other
tasks on the event loop. Persistence is scheduled, not awaited.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from .eviction import select_evictions
from .events import EventBus, EventType
from .index import UnreadIndex
from .models import Notification, NotificationStatus, normalize_subject, now_ms
from .storage import NotificationStorage, Snapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_COUNT = 1000
DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_CLEANUP_INTERVAL_SECONDS = 60 * 60


class NotificationStore:
    """In-memory notification table with TTL/capacity eviction.

    Attributes:
        storage: Persistence collaborator.
        bus: Event bus receiving change events.
        max_count: Capacity enforced by cleanup().
        ttl_ms: Age in milliseconds after which records are removed.
        cleanup_interval: Seconds between background cleanups.

    Example:
        >>> store = NotificationStore(storage, bus, max_count=100)
        >>> notification = store.upsert("/work/app", "Build finished")
        >>> [n.subject for n in store.get_unread()]
        ['/work/app']

    """

    def __init__(
        self,
        storage: NotificationStorage,
        bus: EventBus,
        max_count: int = DEFAULT_MAX_COUNT,
        ttl_ms: int = DEFAULT_TTL_MS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize the store.

        Args:
            storage: Persistence collaborator.
            bus: Event bus for change events.
            max_count: Capacity enforced by cleanup().
            ttl_ms: Record time-to-live in milliseconds.
            cleanup_interval: Seconds between background cleanups.
            clock: Returns the current time in epoch milliseconds.

        """
        self.storage = storage
        self.bus = bus
        self.max_count = max_count
        self.ttl_ms = ttl_ms
        self.cleanup_interval = cleanup_interval
        self._clock = clock

        self._table: dict[str, Notification] = {}
        self._index = UnreadIndex()

    def __len__(self) -> int:
        return len(self._table)

    def __contains__(self, subject: object) -> bool:
        if not isinstance(subject, str):
            return False
        try:
            return normalize_subject(subject) in self._table
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot(self) -> Snapshot:
        return {subject: n.to_dict() for subject, n in self._table.items()}

    def _request_save(self) -> None:
        """Schedule a debounced save; outside an event loop only mark dirty."""
        try:
            self.storage.save(self._snapshot)
        except RuntimeError:
            self.storage.mark_dirty()

    async def load(self) -> int:
        """Replace the table with the persisted one and drop expired records.

        Invalid records are logged and skipped.

        Returns:
            Number of records kept after cleanup.

        """
        raw = await self.storage.load()

        table: dict[str, Notification] = {}
        # Oldest first so table order matches write order
        records: list[Notification] = []
        for key, data in raw.items():
            try:
                records.append(Notification.from_dict(data, subject=key))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping invalid notification record %r: %s", key, e)
        for notification in sorted(records, key=lambda n: n.timestamp):
            table[notification.subject] = notification

        self._table = table
        self._index.rebuild(self._table)

        await self.cleanup()
        return len(self._table)

    def save(self) -> "asyncio.Future[None]":
        """Request a debounced save of the current table.

        Returns:
            Future resolving once a write including the current state is done.

        """
        return self.storage.save(self._snapshot)

    async def save_immediate(self) -> None:
        """Write the table now (graceful shutdown).

        Raises:
            PersistenceError: If the write fails.

        """
        await self.storage.save_immediate(self._snapshot)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(
        self,
        subject: str,
        message: str,
        status: NotificationStatus | str = NotificationStatus.COMPLETED,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Create or overwrite the record for a subject.

        The record becomes unread with timestamp = now (never earlier than
        the record it replaces).

        Args:
            subject: Subject (project path); normalized before use.
            message: Message to show.
            status: working or completed.
            metadata: Optional opaque producer data.

        Returns:
            The stored record.

        Raises:
            ValueError: If subject is empty, status is unknown or metadata
                cannot be encoded as JSON.

        """
        key = normalize_subject(subject)
        status = NotificationStatus(status)
        if metadata:
            # Checked before the table changes; stored records must always persist.
            # The decoded copy detaches the record from the caller's dict.
            try:
                metadata = json.loads(json.dumps(metadata))
            except (TypeError, ValueError) as e:
                raise ValueError(f"Notification metadata must be JSON-serializable: {e}") from e

        timestamp = self._clock()
        previous = self._table.pop(key, None)
        if previous is not None and previous.timestamp > timestamp:
            timestamp = previous.timestamp

        # Re-inserted at the end: table order is write order
        notification = Notification(
            subject=key,
            message=message,
            status=status,
            timestamp=timestamp,
            unread=True,
            metadata=metadata or None,
        )
        self._table[key] = notification
        self._index.update(key, notification)

        self._request_save()
        self.bus.publish(key, EventType(status.value), notification)
        return notification

    def set_working(self, subject: str, message: str = "Working...") -> Notification:
        """Record that a task for the subject has started."""
        return self.upsert(subject, message, NotificationStatus.WORKING)

    def set_completed(
        self,
        subject: str,
        message: str = "Task completed",
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Record that a task for the subject has finished."""
        return self.upsert(subject, message, NotificationStatus.COMPLETED, metadata)

    def mark_read(self, subject: str) -> bool:
        """Mark a subject's notification as read.

        Returns:
            True if a record existed.

        """
        key = normalize_subject(subject)
        notification = self._table.get(key)
        if notification is None:
            return False

        notification.unread = False
        self._index.update(key, notification)

        self._request_save()
        self.bus.publish(key, EventType.READ, notification)
        return True

    def remove(self, subject: str) -> bool:
        """Delete a subject's notification.

        Returns:
            True if a record existed.

        """
        key = normalize_subject(subject)
        if self._table.pop(key, None) is None:
            return False

        self._index.discard(key)

        self._request_save()
        self.bus.publish(key, EventType.REMOVED)
        return True

    def remove_all(self) -> int:
        """Delete every notification.

        Returns:
            Number of records removed.

        """
        count = len(self._table)
        if count == 0:
            return 0

        self._table = {}
        self._index.clear()

        self._request_save()
        self.bus.publish_cleared_all(count)
        logger.info("All notifications cleared (%d)", count)
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, subject: str) -> Notification | None:
        """Return the record for a subject, if any."""
        try:
            key = normalize_subject(subject)
        except ValueError:
            return None
        return self._table.get(key)

    def get_unread(self, subject: str | None = None) -> list[Notification]:
        """Return unread completed notifications, newest first.

        Records past their TTL are excluded even before cleanup removes them.

        Args:
            subject: Restrict the result to one subject.

        Returns:
            Fresh list of matching records.

        """
        now = self._clock()

        if subject is not None:
            try:
                notification = self._index.get(normalize_subject(subject))
            except ValueError:
                return []
            candidates = [notification] if notification is not None else []
        else:
            candidates = list(self._index)

        results = [n for n in candidates if now - n.timestamp < self.ttl_ms]
        results.sort(key=lambda n: n.timestamp, reverse=True)
        return results

    def get_stats(self) -> dict[str, Any]:
        """Statistics for the health endpoint.

        Returns:
            Dict with total, unread, max_age_ms, max_count, ttl_ms and
            listener_count.

        """
        max_age = 0
        if self._table:
            oldest = min(n.timestamp for n in self._table.values())
            max_age = max(0, self._clock() - oldest)

        return {
            "total": len(self._table),
            "unread": sum(1 for n in self._table.values() if n.unread),
            "max_age_ms": max_age,
            "max_count": self.max_count,
            "ttl_ms": self.ttl_ms,
            "listener_count": self.bus.listener_count(),
        }

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def _evict(self, subjects: list[str]) -> None:
        for subject in subjects:
            self._table.pop(subject, None)
            self._index.discard(subject)

    async def cleanup(self) -> int:
        """Remove expired records, then enforce capacity.

        The decision and the removal happen without suspending, so records
        upserted concurrently are always judged against current state.

        Returns:
            Number of records removed.

        Raises:
            PersistenceError: If records were removed and saving them failed.

        """
        now = self._clock()
        before = len(self._table)

        expired = [
            subject
            for subject, n in self._table.items()
            if now - n.timestamp >= self.ttl_ms
        ]
        self._evict(expired)

        evicted = select_evictions(self._table, self.max_count)
        self._evict(evicted)

        removed = before - len(self._table)
        logger.debug(
            "Notification cleanup: before=%d, expired=%d, evicted=%d, remaining=%d",
            before,
            len(expired),
            len(evicted),
            len(self._table),
        )

        if removed > 0:
            logger.info(
                "Cleaned up %d expired/excess notifications (remaining=%d, max_count=%d)",
                removed,
                len(self._table),
                self.max_count,
            )
            # Shared with other waiters; cancelling cleanup must not cancel it
            await asyncio.shield(self.save())

        return removed

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            logger.debug("Running scheduled notification cleanup")
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Scheduled notification cleanup failed")

    def start_cleanup_interval(self) -> "asyncio.Task[None]":
        """Start periodic cleanup on the running loop.

        Returns:
            The background task; cancel it to stop.

        """
        logger.info(
            "Notification cleanup every %.0fs (ttl=%.1fh, max_count=%d)",
            self.cleanup_interval,
            self.ttl_ms / 1000 / 60 / 60,
            self.max_count,
        )
        return asyncio.get_running_loop().create_task(self._cleanup_loop())
