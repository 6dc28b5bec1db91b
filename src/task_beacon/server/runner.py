"""Run the app under uvicorn.

uvicorn waits for open responses to finish before it runs the lifespan
shutdown, and an SSE response only finishes when its stream ends. The
server below ends every stream as soon as the exit signal arrives, so a
Ctrl+C with browser tabs attached still shuts down promptly and saves the
table.
"""

import asyncio
import logging
from types import FrameType

import uvicorn
from starlette.applications import Starlette

from task_beacon.server.sse import ConnectionManager

logger = logging.getLogger(__name__)


class BeaconServer(uvicorn.Server):
    """uvicorn server that closes SSE streams when asked to exit."""

    def __init__(self, config: uvicorn.Config, manager: ConnectionManager) -> None:
        super().__init__(config)
        self.manager = manager

    def handle_exit(self, sig: int, frame: FrameType | None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.manager.close_all()
        else:
            # Signal handlers may interrupt a loop step; close on the next one
            loop.call_soon_threadsafe(self.manager.close_all)
        super().handle_exit(sig, frame)


def run_server(
    app: Starlette,
    host: str,
    port: int,
    log_level: str,
    graceful_shutdown_seconds: float,
) -> None:
    """Serve the app until an exit signal, then shut down gracefully.

    Args:
        app: App from create_app().
        host: Bind address.
        port: Bind port.
        log_level: uvicorn log level.
        graceful_shutdown_seconds: Upper bound on waiting for open requests.

    """
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        log_level=log_level,
        timeout_graceful_shutdown=graceful_shutdown_seconds,
    )
    server = BeaconServer(config, app.state.connection_manager)
    logger.debug("Graceful shutdown timeout %.1fs", graceful_shutdown_seconds)
    server.run()
