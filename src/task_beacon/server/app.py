"""Starlette application factory.

Components are created eagerly and attached to ``app.state`` so route
handlers (and tests) can reach them without running the lifespan:

- app.state.config: Config
- app.state.event_bus: EventBus
- app.state.notification_store: NotificationStore
- app.state.connection_manager: ConnectionManager

The lifespan loads persisted notifications, starts the periodic cleanup
and, on shutdown, closes every stream and writes the table to disk.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette

from task_beacon.core.config import Config, get_config
from task_beacon.core.exceptions import PersistenceError
from task_beacon.notifications import EventBus, NotificationStorage, NotificationStore
from task_beacon.notifications.events import LISTENER_WARNING_BUFFER
from task_beacon.server.routes import API_ROUTES
from task_beacon.server.sse import ConnectionManager

logger = logging.getLogger(__name__)


def build_components(
    config: Config,
) -> tuple[EventBus, NotificationStore, ConnectionManager]:
    """Wire the bus, store and connection manager from configuration."""
    settings = config.notifications
    stream = config.stream

    bus = EventBus(max_listeners=stream.global_limit + LISTENER_WARNING_BUFFER)
    storage = NotificationStorage(
        settings.file_path,
        debounce_seconds=settings.save_debounce_seconds,
    )
    store = NotificationStore(
        storage,
        bus,
        max_count=settings.max_count,
        ttl_ms=int(settings.ttl_seconds * 1000),
        cleanup_interval=settings.cleanup_interval_seconds,
    )
    manager = ConnectionManager(
        store,
        bus,
        global_limit=stream.global_limit,
        per_source_limit=stream.per_source_limit,
        keepalive_interval=stream.keepalive_interval_seconds,
    )
    return bus, store, manager


def create_app(config: Config | None = None) -> Starlette:
    """Create the task-beacon ASGI application.

    Args:
        config: Configuration; the loaded global config is used when omitted.

    Returns:
        Configured Starlette app.

    Raises:
        ConfigError: If config is omitted and none has been loaded.

    """
    if config is None:
        config = get_config()
    bus, store, manager = build_components(config)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        count = await store.load()
        logger.info(
            "task-beacon started with %d notifications (data: %s)",
            count,
            store.storage.path,
        )
        cleanup_task = store.start_cleanup_interval()
        try:
            yield
        finally:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task

            await manager.shutdown()

            try:
                await store.save_immediate()
            except PersistenceError:
                logger.exception("Failed to save notifications on shutdown")
            logger.info("task-beacon stopped")

    app = Starlette(routes=API_ROUTES, lifespan=lifespan)
    app.state.config = config
    app.state.event_bus = bus
    app.state.notification_store = store
    app.state.connection_manager = manager
    return app
