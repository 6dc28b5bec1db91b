"""HTTP/SSE server for task-beacon (Starlette)."""

from .app import create_app

__all__ = ["create_app"]
