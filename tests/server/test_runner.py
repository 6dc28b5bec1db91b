"""Tests for running the app under uvicorn."""

import asyncio
import signal
from pathlib import Path
from unittest.mock import patch

import uvicorn
from starlette.applications import Starlette

from task_beacon.core.config import Config
from task_beacon.server import create_app
from task_beacon.server.runner import BeaconServer, run_server
from task_beacon.server.sse import ConnectionManager, QueueTransport


class TestBeaconServer:
    """Tests for closing streams on the exit signal."""

    async def test_exit_signal_ends_open_streams(self, store, bus):
        """Open streams finish once the server is asked to exit."""
        manager = ConnectionManager(store, bus, keepalive_interval=60)
        transports = [QueueTransport() for _ in range(2)]
        for transport in transports:
            assert manager.establish("127.0.0.1", "/work/app", transport) is None
        server = BeaconServer(uvicorn.Config(Starlette(), log_config=None), manager)

        server.handle_exit(signal.SIGTERM, None)

        for transport in transports:
            frames = await asyncio.wait_for(_drain(transport), timeout=5)
            assert frames[0].startswith("event: connected")
        assert server.should_exit
        assert manager.connection_count == 0
        assert manager.get_stats()["global_count"] == 0
        assert bus.listener_count() == 0

    def test_exit_outside_loop_closes_directly(self, store, bus):
        """Without a running loop the streams are closed on the spot."""
        manager = ConnectionManager(store, bus)
        manager.admit("127.0.0.1")
        server = BeaconServer(uvicorn.Config(Starlette(), log_config=None), manager)

        with patch.object(manager, "close_all", wraps=manager.close_all) as close_all:
            server.handle_exit(signal.SIGINT, None)

        close_all.assert_called_once_with()
        assert server.should_exit


class TestRunServer:
    """Tests for run_server()."""

    def test_passes_grace_period_and_manager(self, tmp_path: Path):
        """The uvicorn config carries the grace period and bind settings."""
        app = create_app(Config.model_validate({"notifications": {"data_dir": str(tmp_path)}}))

        with patch.object(BeaconServer, "run", autospec=True) as run:
            run_server(
                app, host="0.0.0.0", port=8100, log_level="info", graceful_shutdown_seconds=2.5
            )

        server = run.call_args.args[0]
        assert isinstance(server, BeaconServer)
        assert server.manager is app.state.connection_manager
        assert server.config.timeout_graceful_shutdown == 2.5
        assert server.config.host == "0.0.0.0"
        assert server.config.port == 8100
        assert server.config.log_config is None


async def _drain(transport: QueueTransport) -> list[str]:
    return [frame async for frame in transport.stream()]
