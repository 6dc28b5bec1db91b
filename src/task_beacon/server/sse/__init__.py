"""SSE streaming for notification subscribers.

Provides:
- SSE frame formatting
- Queue-backed transport with drop-oldest backpressure
- Connection manager with admission control, keepalive and idempotent teardown
"""

from .event import SSE_HEADERS, SSEEvent, format_comment
from .manager import (
    Connection,
    ConnectionManager,
    ConnectionState,
    RejectReason,
    Rejection,
)
from .transport import QueueTransport, Transport

__all__ = [
    "SSE_HEADERS",
    "Connection",
    "ConnectionManager",
    "ConnectionState",
    "QueueTransport",
    "RejectReason",
    "Rejection",
    "SSEEvent",
    "Transport",
    "format_comment",
]
