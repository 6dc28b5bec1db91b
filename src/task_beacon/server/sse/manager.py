"""SSE connection manager.

Owns every streaming connection from admission to teardown:

    REQUESTED -> ADMITTED -> STREAMING -> CLOSED

Admission control uses increment-first, validate-second, rollback-on-reject
against global and per-source counters. Nothing awaits between the
increment and the check, so two concurrent requests can never both see
room that only exists for one of them.

Teardown of a connection runs exactly once no matter how many triggers
fire (client disconnect, server shutdown, transport error), and resources
attached after teardown are released on the spot.
"""

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from task_beacon.notifications import EventBus, NotificationEvent, NotificationStore

from ..metrics import StreamMetrics
from .event import SSE_HEADERS
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_LIMIT = 100
DEFAULT_PER_SOURCE_LIMIT = 5
DEFAULT_KEEPALIVE_INTERVAL = 30.0  # seconds

# Retry hints returned to rejected clients (seconds)
SERVICE_RETRY_AFTER = 30
SOURCE_RETRY_AFTER = 10

EMPTY_NOTIFICATION_PAYLOAD = json.dumps({"hasNotification": False}, separators=(",", ":"))


class ConnectionState(StrEnum):
    """Lifecycle of a streaming connection."""

    REQUESTED = "requested"
    ADMITTED = "admitted"
    STREAMING = "streaming"
    CLOSED = "closed"


class RejectReason(StrEnum):
    """Why admission control turned a connection away."""

    SERVICE_AT_CAPACITY = "service_at_capacity"
    TOO_MANY_CONNECTIONS_FOR_SOURCE = "too_many_connections_for_source"


@dataclass(frozen=True)
class Rejection:
    """Retryable admission failure.

    Attributes:
        reason: Machine-readable reason.
        status_code: HTTP status to answer with (503 or 429).
        message: Human-readable message.
        retry_after: Suggested wait before retrying, in seconds.

    """

    reason: RejectReason
    status_code: int
    message: str
    retry_after: int

    def to_dict(self) -> dict[str, Any]:
        """Error body for the HTTP response."""
        return {"error": self.message, "code": self.reason.value, "retry_after": self.retry_after}


class Connection:
    """One admitted streaming client.

    Only the ConnectionManager creates and mutates connections.

    Attributes:
        source_key: Client identity used for per-source limits (client IP).
        subject: Subject whose events this connection receives.
        transport: Where frames are written.
        state: Current lifecycle state.

    """

    def __init__(
        self,
        manager: "ConnectionManager",
        source_key: str,
        subject: str,
        transport: Transport,
    ) -> None:
        self.source_key = source_key
        self.subject = subject
        self.transport = transport
        self.state = ConnectionState.ADMITTED

        self._manager = manager
        self._keepalive: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._cleaned_up = False

    @property
    def cleaned_up(self) -> bool:
        """Whether teardown has run."""
        return self._cleaned_up

    def _safe_unsubscribe(self, unsubscribe: Callable[[], None], late: bool = False) -> None:
        try:
            unsubscribe()
        except Exception as e:
            logger.warning(
                "Error during %sunsubscribe for %s: %s",
                "late " if late else "",
                self.subject,
                e,
            )

    def set_keepalive(self, task: "asyncio.Task[None]") -> None:
        """Attach the keepalive task; cancels it at once if already torn down."""
        if self._cleaned_up:
            task.cancel()
            return
        self._keepalive = task

    def set_unsubscribe(self, unsubscribe: Callable[[], None]) -> None:
        """Attach the bus unsubscribe handle; calls it at once if already torn down."""
        if self._cleaned_up:
            self._safe_unsubscribe(unsubscribe, late=True)
            return
        self._unsubscribe = unsubscribe

    def teardown(self) -> None:
        """Release everything this connection holds. Idempotent."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.state = ConnectionState.CLOSED

        if self._keepalive is not None:
            self._keepalive.cancel()
            self._keepalive = None

        if self._unsubscribe is not None:
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            self._safe_unsubscribe(unsubscribe)

        remaining = self._manager._release(self)

        logger.info(
            "SSE client disconnected: subject=%s source=%s (remaining for source: %d)",
            self.subject,
            self.source_key,
            remaining,
        )


class ConnectionManager:
    """Admission control and lifecycle for SSE connections.

    Attributes:
        store: Source of the initial notification state.
        bus: Event bus the connections subscribe to.
        global_limit: Maximum simultaneous connections.
        per_source_limit: Maximum simultaneous connections per source key.
        keepalive_interval: Seconds between keepalive comments.
        metrics: Prometheus connection metrics, kept in step with the counters.

    """

    def __init__(
        self,
        store: NotificationStore,
        bus: EventBus,
        global_limit: int = DEFAULT_GLOBAL_LIMIT,
        per_source_limit: int = DEFAULT_PER_SOURCE_LIMIT,
        keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL,
        metrics: StreamMetrics | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.global_limit = global_limit
        self.per_source_limit = per_source_limit
        self.keepalive_interval = keepalive_interval
        self.metrics = metrics if metrics is not None else StreamMetrics()

        self._global_count = 0
        self._per_source: dict[str, int] = {}
        self._connections: set[Connection] = set()

    # ------------------------------------------------------------------
    # Admission control
    # ------------------------------------------------------------------

    def admit(self, source_key: str) -> Rejection | None:
        """Reserve a connection slot for a source.

        On success both counters stay incremented until release().

        Returns:
            None if admitted, otherwise the Rejection.

        """
        self._global_count += 1
        if self._global_count > self.global_limit:
            self._global_count -= 1
            logger.warning(
                "Global SSE connection limit reached (%d/%d), rejecting %s",
                self._global_count,
                self.global_limit,
                source_key,
            )
            self.metrics.connections_rejected.labels(RejectReason.SERVICE_AT_CAPACITY.value).inc()
            return Rejection(
                reason=RejectReason.SERVICE_AT_CAPACITY,
                status_code=503,
                message="Service at capacity",
                retry_after=SERVICE_RETRY_AFTER,
            )

        count = self._per_source.get(source_key, 0) + 1
        self._per_source[source_key] = count
        if count > self.per_source_limit:
            if count - 1 > 0:
                self._per_source[source_key] = count - 1
            else:
                del self._per_source[source_key]
            self._global_count -= 1
            logger.warning(
                "SSE connection limit reached for %s (%d/%d)",
                source_key,
                count - 1,
                self.per_source_limit,
            )
            self.metrics.connections_rejected.labels(
                RejectReason.TOO_MANY_CONNECTIONS_FOR_SOURCE.value
            ).inc()
            return Rejection(
                reason=RejectReason.TOO_MANY_CONNECTIONS_FOR_SOURCE,
                status_code=429,
                message="Too many concurrent connections",
                retry_after=SOURCE_RETRY_AFTER,
            )

        self.metrics.connections_active.set(self._global_count)
        return None

    def release(self, source_key: str) -> int:
        """Give back a slot reserved by admit().

        Counters never go below zero, and a source's entry is dropped once
        it reaches zero.

        Returns:
            Connections still counted for the source.

        """
        self._global_count = max(0, self._global_count - 1)
        self.metrics.connections_active.set(self._global_count)

        count = self._per_source.get(source_key, 0)
        if count <= 1:
            self._per_source.pop(source_key, None)
            return 0
        self._per_source[source_key] = count - 1
        return count - 1

    def _release(self, connection: Connection) -> int:
        self._connections.discard(connection)
        return self.release(connection.source_key)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _send_initial_state(self, transport: Transport, subject: str) -> None:
        transport.write_frame("connected", {"timestamp": int(time.time() * 1000)})

        notification = self.store.get(subject)
        if notification is not None and notification.unread:
            transport.write_frame("notification", notification.to_status_payload())
        else:
            transport.write_frame("notification", EMPTY_NOTIFICATION_PAYLOAD)

    def _make_listener(
        self,
        transport: Transport,
        subject: str,
    ) -> Callable[[NotificationEvent], None]:
        def listener(event: NotificationEvent) -> None:
            # Broadcast events carry no subject
            if event.subject is not None and event.subject != subject:
                return
            if transport.closed:
                return
            transport.write_frame("notification", event.serialized_payload)

        return listener

    async def _keepalive_loop(self, transport: Transport) -> None:
        while not transport.closed:
            await asyncio.sleep(self.keepalive_interval)
            if transport.closed:
                break
            transport.write_comment("keepalive")

    def establish(
        self,
        source_key: str,
        subject: str,
        transport: Transport,
    ) -> Rejection | None:
        """Admit and start streaming a connection.

        Must be called from a running event loop (the keepalive is a task).

        Args:
            source_key: Client identity for per-source limits.
            subject: Normalized subject to stream.
            transport: Transport for this client.

        Returns:
            None once streaming, otherwise the Rejection. Rejected requests
            create no connection and leave the counters untouched.

        Raises:
            Exception: Any error writing the initial state. The connection is
                torn down first, so its slot is released.

        """
        rejection = self.admit(source_key)
        if rejection is not None:
            return rejection

        connection = Connection(self, source_key, subject, transport)
        self._connections.add(connection)
        transport.on_close(connection.teardown)

        try:
            transport.set_headers(SSE_HEADERS)
            self._send_initial_state(transport, subject)
        except Exception:
            logger.exception("Failed to start SSE stream for %s", subject)
            connection.teardown()
            transport.close()
            raise

        logger.info(
            "SSE client connected: subject=%s source=%s (source connections: %d, total: %d)",
            subject,
            source_key,
            self._per_source.get(source_key, 0),
            self._global_count,
        )

        connection.set_unsubscribe(self.bus.subscribe(self._make_listener(transport, subject)))
        connection.set_keepalive(
            asyncio.get_running_loop().create_task(self._keepalive_loop(transport))
        )
        if not connection.cleaned_up:
            connection.state = ConnectionState.STREAMING

        return None

    def close_all(self) -> int:
        """Close every live connection and tear it down.

        Nothing here awaits, so it can run from a signal handler on the loop
        thread. Response streams end once their transport is closed, which
        lets the HTTP server finish its graceful shutdown.

        Returns:
            Number of connections closed.

        """
        connections = list(self._connections)
        for connection in connections:
            connection.transport.close()
            connection.teardown()

        if connections:
            logger.info("Closed %d SSE connections", len(connections))
        return len(connections)

    async def shutdown(self) -> None:
        """Close every live connection and wait for their keepalive tasks."""
        keepalives = [c._keepalive for c in self._connections if c._keepalive is not None]
        closed = self.close_all()
        for keepalive in keepalives:
            with contextlib.suppress(asyncio.CancelledError):
                await keepalive

        if closed:
            logger.info("SSE manager shutdown, disconnected %d clients", closed)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def connection_count(self) -> int:
        """Number of live connections."""
        return len(self._connections)

    def get_stats(self) -> dict[str, int]:
        """Connection statistics for the health endpoint."""
        return {
            "global_count": self._global_count,
            "source_count": len(self._per_source),
            "global_limit": self.global_limit,
            "per_source_limit": self.per_source_limit,
        }

    def source_connections(self, source_key: str) -> int:
        """Connections currently counted for one source."""
        return self._per_source.get(source_key, 0)

    def reset(self) -> None:
        """Reset connection tracking (test hook)."""
        self._global_count = 0
        self._per_source.clear()
        self._connections.clear()
        self.metrics.connections_active.set(0)
