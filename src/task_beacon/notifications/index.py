"""Unread index over the notification table.

Holds exactly the records with ``unread and status == completed`` so that
"what is unread?" queries never scan the whole table. The index stores the
same Notification objects as the table; the store patches it on every
mutation.
"""

from collections.abc import Iterator, Mapping

from .models import Notification


class UnreadIndex:
    """Subject -> Notification view of unread completed records."""

    def __init__(self) -> None:
        self._entries: dict[str, Notification] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, subject: object) -> bool:
        return subject in self._entries

    def __iter__(self) -> Iterator[Notification]:
        return iter(self._entries.values())

    def update(self, subject: str, notification: Notification | None) -> None:
        """Re-evaluate membership of one subject after a table mutation.

        Args:
            subject: Table key.
            notification: Current record for the key, or None if it was removed.

        """
        if notification is not None and notification.is_unread_completed:
            self._entries[subject] = notification
        else:
            self._entries.pop(subject, None)

    def discard(self, subject: str) -> None:
        """Drop a subject from the index if present."""
        self._entries.pop(subject, None)

    def get(self, subject: str) -> Notification | None:
        """Return the indexed record for a subject, if unread and completed."""
        return self._entries.get(subject)

    def clear(self) -> None:
        """Remove every entry."""
        self._entries.clear()

    def rebuild(self, table: Mapping[str, Notification]) -> None:
        """Recompute the index from scratch (after load)."""
        self._entries = {
            subject: notification
            for subject, notification in table.items()
            if notification.is_unread_completed
        }
