"""Tests for NotificationStore."""

import asyncio
import json
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from task_beacon.notifications import (
    EventBus,
    EventType,
    NotificationEvent,
    NotificationStatus,
    NotificationStorage,
    NotificationStore,
)

HOUR_MS = 60 * 60 * 1000


@pytest.fixture
def events(bus: EventBus) -> list[NotificationEvent]:
    """Collect every event published on the bus."""
    received: list[NotificationEvent] = []
    bus.subscribe(received.append)
    return received


class TestUpsert:
    """Tests for upsert / set_working / set_completed."""

    def test_creates_unread_record(self, store: NotificationStore, clock):
        """A new record is unread and timestamped now."""
        n = store.upsert("/Work/App/", "Build finished")

        assert n.subject == "/work/app"
        assert n.unread is True
        assert n.timestamp == clock.now
        assert n.status == NotificationStatus.COMPLETED
        assert "/work/app" in store

    def test_overwrite_resets_unread(self, store: NotificationStore, clock):
        """Overwriting a read record makes it unread again."""
        store.upsert("/a", "first")
        store.mark_read("/a")
        clock.advance(1000)

        n = store.upsert("/a", "second")

        assert n.unread is True
        assert n.message == "second"
        assert len(store) == 1
        assert store.get_unread("/a") == [n]

    def test_timestamp_never_goes_backwards(self, store: NotificationStore, clock):
        """A clock step back does not make an overwrite older."""
        first = store.upsert("/a", "first")
        clock.advance(-5000)

        second = store.upsert("/a", "second")

        assert second.timestamp == first.timestamp

    def test_working_not_in_unread(self, store: NotificationStore):
        """Working records are not unread notifications."""
        store.set_working("/a")

        assert store.get_unread() == []
        assert store.get("/a").status == NotificationStatus.WORKING

    def test_working_then_completed(self, store: NotificationStore):
        """Completing a working task makes it unread."""
        store.set_working("/a", "Refactoring")
        store.set_completed("/a", "Done", {"files_changed": 3})

        [n] = store.get_unread()
        assert n.message == "Done"
        assert n.metadata == {"files_changed": 3}

    def test_publishes_status_event(self, store: NotificationStore, events):
        """The event type follows the record status."""
        store.set_working("/a")
        store.set_completed("/a")

        assert [e.type for e in events] == [EventType.WORKING, EventType.COMPLETED]
        assert all(e.subject == "/a" for e in events)

    def test_empty_subject_rejected(self, store: NotificationStore, events):
        """Empty subjects raise and publish nothing."""
        with pytest.raises(ValueError):
            store.upsert("  ", "msg")

        assert events == []
        assert len(store) == 0

    def test_unknown_status_rejected(self, store: NotificationStore):
        """Unknown statuses raise ValueError."""
        with pytest.raises(ValueError):
            store.upsert("/a", "msg", "exploded")

    def test_unencodable_metadata_rejected(self, store: NotificationStore, events):
        """Metadata json cannot encode raises before anything changes."""
        store.set_completed("/a", "first")
        events.clear()

        with pytest.raises(ValueError, match="JSON-serializable"):
            store.set_completed("/a", "second", {"when": datetime(2024, 1, 1)})

        assert store.get("/a").message == "first"
        assert list(store._table) == ["/a"]
        assert events == []

    def test_metadata_detached_from_caller(self, store: NotificationStore):
        """Later changes to the caller's dict do not reach the stored record."""
        metadata = {"files_changed": 3, "tools": ["edit"]}
        store.set_completed("/a", "Done", metadata)

        metadata["files_changed"] = 99
        metadata["tools"].append("bash")

        assert store.get("/a").metadata == {"files_changed": 3, "tools": ["edit"]}

    def test_marks_storage_dirty_outside_loop(self, store: NotificationStore):
        """Without a running loop the change is still tracked as unsaved."""
        store.upsert("/a", "msg")

        assert store.storage.is_dirty


class TestMarkReadAndRemove:
    """Tests for mark_read / remove / remove_all."""

    def test_mark_read(self, store: NotificationStore, events):
        """mark_read() clears unread and publishes a read event."""
        store.upsert("/a", "msg")

        assert store.mark_read("/a") is True

        assert store.get("/a").unread is False
        assert store.get_unread() == []
        assert events[-1].type == EventType.READ
        assert events[-1].notification is store.get("/a")

    def test_mark_read_missing(self, store: NotificationStore, events):
        """Marking a missing subject returns False without events."""
        assert store.mark_read("/missing") is False
        assert events == []

    def test_remove(self, store: NotificationStore, events):
        """remove() deletes the record and publishes removed."""
        store.upsert("/a", "msg")

        assert store.remove("/A/") is True

        assert store.get("/a") is None
        assert store.get_unread() == []
        assert events[-1].type == EventType.REMOVED
        assert json.loads(events[-1].serialized_payload) == {
            "hasNotification": False,
            "type": "removed",
        }

    def test_remove_missing(self, store: NotificationStore):
        """Removing a missing subject returns False."""
        assert store.remove("/missing") is False

    def test_remove_all(self, store: NotificationStore, events):
        """remove_all() empties the store and broadcasts once."""
        store.upsert("/a", "msg")
        store.upsert("/b", "msg")
        events.clear()

        assert store.remove_all() == 2

        assert len(store) == 0
        assert store.get_unread() == []
        assert len(events) == 1
        assert events[0].type == EventType.CLEARED_ALL
        assert events[0].subject is None
        assert events[0].count == 2

    def test_remove_all_empty(self, store: NotificationStore, events):
        """Clearing an empty store publishes nothing."""
        assert store.remove_all() == 0
        assert events == []


class TestQueries:
    """Tests for get_unread / get / get_stats."""

    def test_get_unread_newest_first(self, store: NotificationStore, clock):
        """Results are sorted by timestamp descending."""
        for subject in ("/a", "/b", "/c"):
            store.upsert(subject, "msg")
            clock.advance(10)

        assert [n.subject for n in store.get_unread()] == ["/c", "/b", "/a"]

    def test_get_unread_excludes_expired(self, store: NotificationStore, clock):
        """Records past their TTL are hidden before cleanup runs."""
        store.upsert("/old", "msg")
        clock.advance(HOUR_MS - 1)
        store.upsert("/new", "msg")

        assert {n.subject for n in store.get_unread()} == {"/old", "/new"}

        clock.advance(1)

        assert [n.subject for n in store.get_unread()] == ["/new"]
        assert "/old" in store

    def test_get_unread_single_subject(self, store: NotificationStore):
        """Filtering by subject returns at most one record."""
        store.upsert("/a", "msg")
        store.upsert("/b", "msg")

        assert [n.subject for n in store.get_unread("/B")] == ["/b"]
        assert store.get_unread("/missing") == []
        assert store.get_unread("") == []

    def test_get_unread_returns_fresh_list(self, store: NotificationStore):
        """Mutating the result does not touch the store."""
        store.upsert("/a", "msg")

        store.get_unread().clear()

        assert len(store.get_unread()) == 1

    def test_get_invalid_subject(self, store: NotificationStore):
        """An empty subject simply isn't found."""
        assert store.get("") is None

    def test_get_stats(self, store: NotificationStore, bus: EventBus, clock):
        """Stats report counts, age and limits."""
        store.upsert("/a", "msg")
        clock.advance(500)
        store.upsert("/b", "msg")
        store.mark_read("/b")
        bus.subscribe(MagicMock())

        assert store.get_stats() == {
            "total": 2,
            "unread": 1,
            "max_age_ms": 500,
            "max_count": 100,
            "ttl_ms": HOUR_MS,
            "listener_count": 1,
        }


class TestCleanup:
    """Tests for TTL and capacity cleanup."""

    async def test_capacity_eviction(self, store: NotificationStore, clock):
        """105 records with capacity 100 lose the 5 oldest."""
        for i in range(105):
            store.upsert(f"/p{i}", "msg")
            clock.advance(1)

        removed = await store.cleanup()

        assert removed == 5
        assert len(store) == 100
        assert all(f"/p{i}" not in store for i in range(5))
        assert "/p5" in store
        assert len(store.get_unread()) == 100
        await store.save_immediate()

    async def test_ttl_eviction(self, store: NotificationStore, clock):
        """Expired records are removed, including from the unread index."""
        store.upsert("/old", "msg")
        clock.advance(HOUR_MS)
        store.upsert("/new", "msg")

        assert await store.cleanup() == 1

        assert "/old" not in store
        assert [n.subject for n in store.get_unread()] == ["/new"]
        await store.save_immediate()

    async def test_cleanup_persists(self, store: NotificationStore, clock):
        """Cleanup that removes records waits for the save."""
        store.upsert("/old", "msg")
        clock.advance(HOUR_MS)

        await store.cleanup()

        assert json.loads(store.storage.path.read_text()) == {}

    async def test_cleanup_noop(self, store: NotificationStore):
        """Nothing to remove means no save."""
        store.upsert("/a", "msg")

        assert await store.cleanup() == 0
        await store.save_immediate()

    async def test_cleanup_does_not_remove_concurrent_upsert(self, store: NotificationStore, clock):
        """A record refreshed before cleanup runs is judged by its new timestamp."""
        store.upsert("/a", "msg")
        clock.advance(HOUR_MS)
        store.upsert("/a", "refreshed")

        assert await store.cleanup() == 0
        assert store.get("/a").message == "refreshed"
        await store.save_immediate()

    async def test_cleanup_interval(self, storage: NotificationStorage, bus: EventBus, clock):
        """The background task runs cleanup periodically."""
        store = NotificationStore(storage, bus, ttl_ms=1000, cleanup_interval=0.01, clock=clock)
        store.upsert("/a", "msg")
        clock.advance(1000)

        task = store.start_cleanup_interval()
        try:
            for _ in range(100):
                if "/a" not in store:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert "/a" not in store
        await store.save_immediate()


class TestPersistence:
    """Tests for load / save round trips through the file."""

    async def test_save_and_load(self, store: NotificationStore, storage, bus, clock):
        """A saved table loads into a new store."""
        store.upsert("/a", "done", metadata={"k": 1})
        store.set_working("/b", "busy")
        store.mark_read("/a")
        await store.save()

        reloaded = NotificationStore(storage, bus, clock=clock)
        assert await reloaded.load() == 2

        assert reloaded.get("/a").unread is False
        assert reloaded.get("/a").metadata == {"k": 1}
        assert reloaded.get("/b").status == NotificationStatus.WORKING

    async def test_load_rebuilds_index(self, storage, bus, clock):
        """Loaded unread completed records are queryable."""
        storage.path.parent.mkdir(parents=True)
        storage.path.write_text(
            json.dumps({
                "/a": {"subject": "/a", "message": "m", "status": "completed",
                       "timestamp": clock.now, "unread": True},
                "/b": {"subject": "/b", "message": "m", "status": "completed",
                       "timestamp": clock.now - 1, "unread": False},
            })
        )
        store = NotificationStore(storage, bus, clock=clock)

        await store.load()

        assert [n.subject for n in store.get_unread()] == ["/a"]

    async def test_load_skips_invalid_records(self, storage, bus, clock, caplog):
        """Invalid records are logged and skipped."""
        storage.path.parent.mkdir(parents=True)
        storage.path.write_text(
            json.dumps({
                "/good": {"subject": "/good", "timestamp": clock.now},
                "/bad": {"subject": "/bad", "timestamp": "yesterday"},
                "/worse": "not a record",
            })
        )
        store = NotificationStore(storage, bus, clock=clock)

        assert await store.load() == 1
        assert "/good" in store
        assert "Skipping invalid notification record" in caplog.text

    async def test_load_runs_cleanup(self, storage, bus, clock):
        """Expired and excess records are dropped at load time."""
        data = {
            f"/p{i}": {"subject": f"/p{i}", "timestamp": clock.now - i, "message": "m"}
            for i in range(5)
        }
        data["/expired"] = {"subject": "/expired", "timestamp": clock.now - HOUR_MS}
        storage.path.parent.mkdir(parents=True)
        storage.path.write_text(json.dumps(data))
        store = NotificationStore(storage, bus, max_count=3, ttl_ms=HOUR_MS, clock=clock)

        assert await store.load() == 3

        assert {n.subject for n in store.get_unread()} == {"/p0", "/p1", "/p2"}
        assert set(json.loads(storage.path.read_text())) == {"/p0", "/p1", "/p2"}

    async def test_load_missing_file(self, store: NotificationStore):
        """A fresh data directory loads an empty store."""
        assert await store.load() == 0
        assert len(store) == 0

    async def test_mutations_coalesce_into_one_save(self, store: NotificationStore):
        """Several mutations in a burst share one pending save."""
        store.upsert("/a", "msg")
        future = store.save()
        store.upsert("/b", "msg")
        store.remove("/a")

        assert store.save() is future
        await future

        assert set(json.loads(store.storage.path.read_text())) == {"/b"}

    async def test_rejected_metadata_does_not_block_saves(self, store: NotificationStore):
        """After a rejected upsert, saves still complete and hold the valid records."""
        store.upsert("/a", "msg")
        with pytest.raises(ValueError):
            store.upsert("/b", "msg", metadata={"when": datetime(2024, 1, 1)})

        await asyncio.wait_for(store.save(), timeout=5)
        await asyncio.wait_for(store.cleanup(), timeout=5)

        assert set(json.loads(store.storage.path.read_text())) == {"/a"}
        assert not store.storage.is_dirty
