"""Route handlers.

- notifications: producer API and SSE stream
- health: service statistics
- metrics: Prometheus scrape endpoint
"""

from .health import routes as health_routes
from .metrics import routes as metrics_routes
from .notifications import routes as notification_routes

# Aggregate all routes
API_ROUTES = notification_routes + health_routes + metrics_routes

__all__ = ["API_ROUTES"]
