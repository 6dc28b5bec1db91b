"""Prometheus metrics for SSE streaming.

Each app owns its own CollectorRegistry so several apps (and tests) can
live in one process without duplicate-registration errors.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

__all__ = [
    "CONTENT_TYPE_LATEST",
    "StreamMetrics",
]


class StreamMetrics:
    """Connection gauges and counters exposed on /metrics.

    Attributes:
        registry: Registry the metrics are registered in.
        connections_active: Currently admitted SSE connections.
        connections_rejected: Admission rejections, labelled by reason.

    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        self.connections_active = Gauge(
            "sse_connections_active",
            "Number of active SSE connections",
            registry=self.registry,
        )
        self.connections_rejected = Counter(
            "sse_connections_rejected_total",
            "SSE connections turned away by admission control",
            ["reason"],
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Text exposition of every metric in the registry."""
        return generate_latest(self.registry)
