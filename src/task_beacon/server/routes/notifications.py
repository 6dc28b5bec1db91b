"""Notification route handlers.

Provides the producer API and the subscriber stream:
- POST /api/notifications/started - Task started (working)
- POST /api/notifications/completed - Task finished (completed)
- GET /api/notifications/status - Current state for one folder
- POST /api/notifications/mark-read - Mark one folder read
- DELETE /api/notifications - Remove one folder's notification
- DELETE /api/notifications/all - Remove everything
- GET /api/notifications/unread - All unread completed notifications
- GET /api/notifications/stream - SSE stream for one folder
"""

import logging
from pathlib import PurePath
from typing import Any, TypeVar

from pydantic import BaseModel, Field, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from task_beacon.notifications import NotificationStore, normalize_subject
from task_beacon.server.sse import ConnectionManager, QueueTransport

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MAX_FOLDER_LENGTH = 4096
MAX_MESSAGE_LENGTH = 1000


class FolderBody(BaseModel):
    """Request body naming a folder."""

    folder: str = Field(min_length=1, max_length=MAX_FOLDER_LENGTH)


class NotificationBody(FolderBody):
    """Request body for started/completed notifications."""

    message: str | None = Field(default=None, max_length=MAX_MESSAGE_LENGTH)
    metadata: dict[str, Any] | None = None


def _get_store(request: Request) -> NotificationStore:
    """Get notification store from app state."""
    return request.app.state.notification_store


def _get_connection_manager(request: Request) -> ConnectionManager:
    """Get SSE connection manager from app state."""
    return request.app.state.connection_manager


def _source_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT | JSONResponse:
    try:
        body = await request.json()
    except Exception:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        return model.model_validate(body)
    except ValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return JSONResponse({"error": "; ".join(errors)}, status_code=400)


def _folder_param(request: Request) -> str | JSONResponse:
    folder = request.query_params.get("folder", "").strip()
    if not folder:
        return JSONResponse({"error": "Missing 'folder' parameter"}, status_code=400)
    if len(folder) > MAX_FOLDER_LENGTH:
        return JSONResponse({"error": "'folder' parameter too long"}, status_code=400)
    return folder


async def notify_started(request: Request) -> JSONResponse:
    """POST /api/notifications/started - Record that a task started.

    Body:
        {"folder": "/path/to/project", "message": "Working..."}

    """
    body = await _parse_body(request, NotificationBody)
    if isinstance(body, JSONResponse):
        return body

    try:
        notification = _get_store(request).set_working(body.folder, body.message or "Working...")
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    logger.info("Started notification stored for %s", notification.subject)
    return JSONResponse({
        "status": "ok",
        "folder": notification.subject,
        "message": notification.message,
        "state": notification.status.value,
    })


async def notify_completed(request: Request) -> JSONResponse:
    """POST /api/notifications/completed - Record that a task finished.

    Body:
        {"folder": "/path/to/project", "message": "...", "metadata": {...}}

    """
    body = await _parse_body(request, NotificationBody)
    if isinstance(body, JSONResponse):
        return body

    try:
        notification = _get_store(request).set_completed(
            body.folder,
            body.message or "Task completed",
            body.metadata,
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    logger.info(
        "Completion notification stored for %s (metadata: %s)",
        notification.subject,
        bool(notification.metadata),
    )
    return JSONResponse({
        "status": "ok",
        "folder": notification.subject,
        "message": notification.message,
        "state": notification.status.value,
    })


async def get_status(request: Request) -> JSONResponse:
    """GET /api/notifications/status?folder=... - Current state for a folder."""
    folder = _folder_param(request)
    if isinstance(folder, JSONResponse):
        return folder

    notification = _get_store(request).get(folder)
    if notification is not None and notification.unread:
        return JSONResponse(notification.to_status_payload())
    return JSONResponse({"hasNotification": False})


async def mark_read(request: Request) -> JSONResponse:
    """POST /api/notifications/mark-read - Mark a folder's notification read."""
    body = await _parse_body(request, FolderBody)
    if isinstance(body, JSONResponse):
        return body

    try:
        found = _get_store(request).mark_read(body.folder)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    if found:
        logger.info("Notification marked as read: %s", body.folder)
    return JSONResponse({"status": "ok", "found": found})


async def delete_notification(request: Request) -> JSONResponse:
    """DELETE /api/notifications?folder=... - Remove a folder's notification."""
    folder = _folder_param(request)
    if isinstance(folder, JSONResponse):
        return folder

    found = _get_store(request).remove(folder)
    if found:
        logger.info("Notification cleared: %s", folder)
    return JSONResponse({"status": "ok", "found": found})


async def delete_all_notifications(request: Request) -> JSONResponse:
    """DELETE /api/notifications/all - Remove every notification."""
    count = _get_store(request).remove_all()
    return JSONResponse({"status": "ok", "count": count})


async def list_unread(request: Request) -> JSONResponse:
    """GET /api/notifications/unread - Unread completed notifications, newest first."""
    notifications = []
    for notification in _get_store(request).get_unread():
        item: dict[str, Any] = {
            "folder": notification.subject,
            "projectName": PurePath(notification.subject).name or notification.subject,
            "message": notification.message,
            "timestamp": notification.timestamp,
            "status": notification.status.value,
        }
        if notification.metadata:
            item["metadata"] = notification.metadata
        notifications.append(item)

    return JSONResponse({"notifications": notifications, "count": len(notifications)})


async def stream_notifications(request: Request) -> Response:
    """GET /api/notifications/stream?folder=... - SSE stream for a folder.

    Returns:
        200: text/event-stream.
        400: Missing folder.
        429: Too many connections from this client.
        503: Server at its global connection limit.

    """
    folder = _folder_param(request)
    if isinstance(folder, JSONResponse):
        return folder

    try:
        subject = normalize_subject(folder)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    manager = _get_connection_manager(request)
    transport = QueueTransport(max_queue_size=request.app.state.config.stream.max_queue_size)

    rejection = manager.establish(_source_key(request), subject, transport)
    if rejection is not None:
        return JSONResponse(
            rejection.to_dict(),
            status_code=rejection.status_code,
            headers={"Retry-After": str(rejection.retry_after)},
        )

    return StreamingResponse(
        transport.stream(),
        headers=transport.headers,
        media_type="text/event-stream",
    )


routes = [
    Route("/api/notifications/started", notify_started, methods=["POST"]),
    Route("/api/notifications/completed", notify_completed, methods=["POST"]),
    Route("/api/notifications/status", get_status, methods=["GET"]),
    Route("/api/notifications/mark-read", mark_read, methods=["POST"]),
    Route("/api/notifications/unread", list_unread, methods=["GET"]),
    Route("/api/notifications/stream", stream_notifications, methods=["GET"]),
    Route("/api/notifications/all", delete_all_notifications, methods=["DELETE"]),
    Route("/api/notifications", delete_notification, methods=["DELETE"]),
]
