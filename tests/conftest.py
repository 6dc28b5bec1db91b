"""Pytest configuration and fixtures for task-beacon tests."""

from pathlib import Path

import pytest

from task_beacon.notifications import EventBus, NotificationStorage, NotificationStore


class FakeClock:
    """Controllable millisecond clock for store tests."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def reset_and_load_default_config(request):
    """Reset config singleton and load defaults for tests.

    Tests that need NO config (e.g., testing config loading itself) can use:
        @pytest.mark.no_auto_config
    """
    from task_beacon.core.config import _reset_config, load_config

    _reset_config()
    if not request.node.get_closest_marker("no_auto_config"):
        load_config({})

    yield

    _reset_config()


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    """Fresh event bus."""
    return EventBus()


@pytest.fixture
def storage(tmp_path: Path) -> NotificationStorage:
    """Storage writing to a temp directory with a short debounce."""
    return NotificationStorage(tmp_path / "data" / "notifications.json", debounce_seconds=0.01)


@pytest.fixture
def store(storage: NotificationStorage, bus: EventBus, clock: FakeClock) -> NotificationStore:
    """Store with a fake clock, small capacity and one-hour TTL."""
    return NotificationStore(
        storage,
        bus,
        max_count=100,
        ttl_ms=60 * 60 * 1000,
        cleanup_interval=3600,
        clock=clock,
    )
