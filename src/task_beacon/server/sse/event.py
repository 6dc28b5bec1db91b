"""SSE wire format."""

import json
from dataclasses import dataclass
from typing import Any

SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


@dataclass
class SSEEvent:
    """Represents a single SSE event.

    Attributes:
        event: Event type name.
        data: Payload; dicts are JSON-encoded, strings are sent as-is
            (already serialized).
        id: Optional event ID for reconnection.
        retry: Optional retry interval in milliseconds.

    """

    event: str
    data: dict[str, Any] | str
    id: str | None = None
    retry: int | None = None

    def format(self) -> str:
        """Format event for SSE protocol.

        Returns:
            SSE-formatted string ready for transmission.

        """
        lines = []

        if self.id:
            lines.append(f"id: {self.id}")
        if self.retry:
            lines.append(f"retry: {self.retry}")

        lines.append(f"event: {self.event}")
        data_str = self.data if isinstance(self.data, str) else json.dumps(self.data)
        for line in data_str.split("\n"):
            lines.append(f"data: {line}")

        lines.append("")  # Empty line terminates message
        return "\n".join(lines) + "\n"


def format_comment(text: str) -> str:
    """Format an SSE comment line (ignored by EventSource, keeps proxies awake)."""
    return f": {text}\n\n"
