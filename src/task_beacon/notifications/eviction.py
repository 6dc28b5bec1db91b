"""Capacity eviction: pick the oldest records to drop.

Two strategies, chosen by how many records must go:

- Small excess (<= LINEAR_SCAN_THRESHOLD): one pass over the table with a
  fixed-size sorted candidate buffer holding the oldest entries seen so far.
- Larger excess: a bounded heap (heapq.nsmallest / nlargest) sized by the
  smaller of the excess and the number of survivors, so the cost stays
  O(n log k) instead of a full O(n log n) sort.

Ordering is by (timestamp, position) where position is the record's
position in the table's iteration order. The store re-inserts a key on
every write, so among equal timestamps the least recently written record
is evicted first.
"""

import bisect
import heapq
from collections.abc import Iterable, Mapping

from .models import Notification

LINEAR_SCAN_THRESHOLD = 10

# (timestamp, position, subject)
_Candidate = tuple[int, int, str]


def _candidates(table: Mapping[str, Notification]) -> Iterable[_Candidate]:
    for position, (subject, notification) in enumerate(table.items()):
        yield (notification.timestamp, position, subject)


def _linear_scan(table: Mapping[str, Notification], count: int) -> list[str]:
    """Single pass keeping the `count` oldest candidates in a sorted buffer."""
    buffer: list[_Candidate] = []
    for candidate in _candidates(table):
        if len(buffer) < count:
            bisect.insort(buffer, candidate)
        elif candidate < buffer[-1]:
            buffer.pop()
            bisect.insort(buffer, candidate)
    return [subject for _, _, subject in buffer]


def select_evictions(
    table: Mapping[str, Notification],
    max_count: int,
    threshold: int = LINEAR_SCAN_THRESHOLD,
) -> list[str]:
    """Select the subjects to remove so that at most `max_count` remain.

    Args:
        table: Current notification table.
        max_count: Capacity to enforce.
        threshold: Largest excess handled by the linear scan.

    Returns:
        Subjects of the oldest records. Empty when the table is within
        capacity.

    """
    excess = len(table) - max_count
    if excess <= 0:
        return []

    if excess <= threshold:
        return _linear_scan(table, excess)

    if excess <= max_count:
        oldest = heapq.nsmallest(excess, _candidates(table))
        return [subject for _, _, subject in oldest]

    # Fewer survivors than evictions: heap over the records to keep instead
    survivors = {
        subject for _, _, subject in heapq.nlargest(max(max_count, 0), _candidates(table))
    }
    return [subject for subject in table if subject not in survivors]
