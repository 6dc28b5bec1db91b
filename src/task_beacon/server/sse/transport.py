"""Streaming transports for SSE connections.

The ConnectionManager writes frames through the Transport protocol and
never touches the HTTP layer directly. QueueTransport is the Starlette
implementation: writes enqueue formatted frames without suspending, and
stream() drains the queue into a StreamingResponse.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from typing import Any, Protocol

from .event import SSEEvent, format_comment

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_SIZE = 1000


class Transport(Protocol):
    """What a streaming connection needs from its transport."""

    @property
    def closed(self) -> bool: ...

    def set_headers(self, headers: dict[str, str]) -> None: ...

    def write_frame(self, event: str, data: dict[str, Any] | str) -> None: ...

    def write_comment(self, text: str) -> None: ...

    def on_close(self, callback: Callable[[], None]) -> None: ...

    def close(self) -> None: ...


class QueueTransport:
    """Bounded-queue transport feeding a StreamingResponse.

    When the client reads slower than events arrive and the queue fills,
    the oldest frame is dropped to make room.

    Attributes:
        headers: Response headers set before the first frame.
        max_queue_size: Maximum buffered frames.
        dropped: Number of frames dropped because the queue was full.

    """

    def __init__(self, max_queue_size: int = DEFAULT_MAX_QUEUE_SIZE) -> None:
        self.headers: dict[str, str] = {}
        self.max_queue_size = max_queue_size
        self.dropped = 0

        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False
        self._close_callbacks: list[Callable[[], None]] = []

    @property
    def closed(self) -> bool:
        """Whether the connection has been closed."""
        return self._closed

    def set_headers(self, headers: dict[str, str]) -> None:
        """Merge response headers (call before the response starts)."""
        self.headers.update(headers)

    def _put(self, item: str | None) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # Drop oldest, add newest
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(item)

    def write_frame(self, event: str, data: dict[str, Any] | str) -> None:
        """Queue an SSE event. No-op once closed."""
        if self._closed:
            return
        self._put(SSEEvent(event=event, data=data).format())

    def write_comment(self, text: str) -> None:
        """Queue an SSE comment. No-op once closed."""
        if self._closed:
            return
        self._put(format_comment(text))

    def on_close(self, callback: Callable[[], None]) -> None:
        """Register a callback for close; runs immediately if already closed."""
        if self._closed:
            callback()
            return
        self._close_callbacks.append(callback)

    def close(self) -> None:
        """Close the transport, end stream() and run close callbacks once."""
        if self._closed:
            return
        self._closed = True
        self._put(None)  # Shutdown signal for stream()

        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("SSE close callback failed")

    async def stream(self) -> AsyncGenerator[str, None]:
        """Yield queued frames until the transport is closed.

        Closing happens in ``finally`` so a client disconnect (generator
        cancelled or closed by the server) triggers the close callbacks.
        """
        try:
            while True:
                frame = await self._queue.get()
                if frame is None:
                    break
                yield frame
        finally:
            self.close()
