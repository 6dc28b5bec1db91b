"""Prometheus metrics route.

GET /metrics serves the app's registry in the Prometheus text format.
"""

from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from task_beacon.server.metrics import CONTENT_TYPE_LATEST


async def metrics(request: Request) -> Response:
    """GET /metrics - Prometheus scrape endpoint."""
    stream_metrics = request.app.state.connection_manager.metrics
    return Response(stream_metrics.render(), media_type=CONTENT_TYPE_LATEST)


routes = [
    Route("/metrics", metrics, methods=["GET"]),
]
