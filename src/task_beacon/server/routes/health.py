"""Health route handler.

GET /health reports store, bus and connection statistics so that listener
or connection leaks show up as steadily growing counts.
"""

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from task_beacon import __version__

logger = logging.getLogger(__name__)


async def health(request: Request) -> JSONResponse:
    """GET /health - Service health and statistics."""
    state = request.app.state
    connection_stats = state.connection_manager.get_stats()

    status = "ok"
    if connection_stats["global_count"] >= connection_stats["global_limit"]:
        status = "degraded"

    return JSONResponse({
        "status": status,
        "version": __version__,
        "notifications": state.notification_store.get_stats(),
        "sse": connection_stats,
        "listener_count": state.event_bus.listener_count(),
    })


routes = [
    Route("/health", health, methods=["GET"]),
]
