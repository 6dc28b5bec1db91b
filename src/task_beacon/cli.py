"""task-beacon command line.

Server:
    $ task-beacon serve --config ~/.config/task-beacon/server.yaml

Producer (e.g. from an agent hook):
    $ task-beacon started . --message "Refactoring parser"
    $ task-beacon completed . --message "Done" --metadata '{"files_changed": 3}'
    $ task-beacon unread
"""

import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.markup import escape
from rich.table import Table

from task_beacon.cli_utils import (
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_ERROR,
    console,
    setup_logging,
)
from task_beacon.client import DEFAULT_SERVER_URL, BeaconClient, ClientError
from task_beacon.core.config import load_config_file
from task_beacon.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="task-beacon",
    help="Background task notifications streamed to browser tabs",
    no_args_is_help=True,
)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "task-beacon" / "server.yaml"

URL_OPTION = typer.Option(
    DEFAULT_SERVER_URL,
    "--url",
    "-u",
    envvar="TASK_BEACON_URL",
    help="task-beacon server URL",
)


def _resolve_folder(folder: Path) -> str:
    return str(folder.expanduser().resolve())


def _client(url: str) -> BeaconClient:
    return BeaconClient(url)


def _call(url: str, method: str, *args: Any, **kwargs: Any) -> dict[str, Any]:
    """Invoke a client method, mapping failures to CLI exit codes."""
    try:
        with _client(url) as client:
            return getattr(client, method)(*args, **kwargs)
    except ClientError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        code = EXIT_CONNECTION_ERROR if e.status_code is None else EXIT_ERROR
        raise typer.Exit(code=code) from None


@app.command(name="serve")
def serve_command(
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to server YAML config",
    ),
    host: str | None = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port (overrides config)"),
    log_level: str | None = typer.Option(None, "--log-level", help="debug, info, warning, error"),
) -> None:
    """Run the notification server."""
    from task_beacon.server import create_app
    from task_beacon.server.runner import run_server

    try:
        cfg = load_config_file(config)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(code=EXIT_CONFIG_ERROR) from None

    level = log_level or cfg.server.log_level
    setup_logging(level)

    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port
    logger.info("Starting task-beacon on http://%s:%d", bind_host, bind_port)

    run_server(
        create_app(cfg),
        host=bind_host,
        port=bind_port,
        log_level=level,
        graceful_shutdown_seconds=cfg.server.graceful_shutdown_seconds,
    )


@app.command(name="started")
def started_command(
    folder: Path = typer.Argument(Path("."), help="Project folder"),
    message: str | None = typer.Option(None, "--message", "-m", help="Status message"),
    url: str = URL_OPTION,
) -> None:
    """Report that a task for a project has started."""
    result = _call(url, "started", _resolve_folder(folder), message)
    console.print(f"[yellow]working[/yellow] {result.get('folder')}: {result.get('message')}")


@app.command(name="completed")
def completed_command(
    folder: Path = typer.Argument(Path("."), help="Project folder"),
    message: str | None = typer.Option(None, "--message", "-m", help="Completion message"),
    metadata: str | None = typer.Option(
        None,
        "--metadata",
        help="JSON object with extra details (files_changed, tools_used, ...)",
    ),
    url: str = URL_OPTION,
) -> None:
    """Report that a task for a project has finished."""
    parsed: dict[str, Any] | None = None
    if metadata:
        try:
            parsed = json.loads(metadata)
        except json.JSONDecodeError as e:
            console.print(f"[red]Error:[/red] --metadata is not valid JSON: {e}")
            raise typer.Exit(code=EXIT_ERROR) from None
        if not isinstance(parsed, dict):
            console.print("[red]Error:[/red] --metadata must be a JSON object")
            raise typer.Exit(code=EXIT_ERROR)

    result = _call(url, "completed", _resolve_folder(folder), message, parsed)
    console.print(f"[green]completed[/green] {result.get('folder')}: {result.get('message')}")


@app.command(name="status")
def status_command(
    folder: Path = typer.Argument(Path("."), help="Project folder"),
    url: str = URL_OPTION,
) -> None:
    """Show the current notification for a project."""
    result = _call(url, "status", _resolve_folder(folder))
    if not result.get("hasNotification"):
        console.print("[dim]No notification[/dim]")
        return
    console.print(f"{result.get('status')}: {result.get('message')}")


@app.command(name="read")
def read_command(
    folder: Path = typer.Argument(Path("."), help="Project folder"),
    url: str = URL_OPTION,
) -> None:
    """Mark a project's notification as read."""
    result = _call(url, "mark_read", _resolve_folder(folder))
    console.print("Marked as read" if result.get("found") else "[dim]No notification[/dim]")


@app.command(name="clear")
def clear_command(
    folder: Path = typer.Argument(Path("."), help="Project folder"),
    url: str = URL_OPTION,
) -> None:
    """Remove a project's notification."""
    result = _call(url, "clear", _resolve_folder(folder))
    console.print("Cleared" if result.get("found") else "[dim]No notification[/dim]")


@app.command(name="clear-all")
def clear_all_command(url: str = URL_OPTION) -> None:
    """Remove every notification."""
    result = _call(url, "clear_all")
    console.print(f"Cleared {result.get('count', 0)} notifications")


@app.command(name="unread")
def unread_command(url: str = URL_OPTION) -> None:
    """List unread completed notifications."""
    result = _call(url, "unread")
    notifications = result.get("notifications", [])
    if not notifications:
        console.print("[dim]No unread notifications[/dim]")
        return

    table = Table(title=f"Unread notifications ({len(notifications)})")
    table.add_column("Project")
    table.add_column("Message")
    table.add_column("Folder", style="dim")
    for item in notifications:
        table.add_row(
            escape(item.get("projectName", "")),
            escape(item.get("message", "")),
            escape(item.get("folder", "")),
        )
    console.print(table)


@app.command(name="stats")
def stats_command(url: str = URL_OPTION) -> None:
    """Show server statistics."""
    result = _call(url, "health")
    notifications = result.get("notifications", {})
    sse = result.get("sse", {})
    console.print(f"Status: {result.get('status')} (v{result.get('version')})")
    console.print(
        f"Notifications: {notifications.get('total', 0)} total, "
        f"{notifications.get('unread', 0)} unread (max {notifications.get('max_count')})"
    )
    console.print(
        f"Streams: {sse.get('global_count', 0)}/{sse.get('global_limit')} "
        f"from {sse.get('source_count', 0)} sources"
    )
    console.print(f"Listeners: {result.get('listener_count', 0)}")


if __name__ == "__main__":
    app()
