"""Server management commands."""

import subprocess
import sys

import click

from gloria_service.cli.utils import error, info, success, warning
from gloria_service.core.settings import get_app_settings

APP_PATH = "gloria_service.app.main:app"


@click.group(name="server")
def server() -> None:
    """Server management commands."""


@server.command()
@click.option("--host", default=None, help="Host to bind (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default: APP_PORT)")
@click.option("--reload/--no-reload", default=True, help="Enable auto-reload on code changes")
@click.option(
    "--log-level",
    default="info",
    type=click.Choice(["critical", "error", "warning", "info", "debug", "trace"]),
    help="Log level",
)
def dev(host: str | None, port: int | None, reload: bool, log_level: str) -> None:
    """Run development server with auto-reload."""
    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port

    info(f"Server will run at: http://{host}:{port}")
    info(f"Environment: {settings.environment}")
    info(f"Auto-reload: {'enabled' if reload else 'disabled'}")

    cmd = ["uvicorn", APP_PATH, "--host", host, "--port", str(port), "--log-level", log_level]
    if reload:
        cmd.append("--reload")

    _run(cmd)


@server.command()
@click.option("--host", default=None, help="Host to bind (default: APP_HOST)")
@click.option("--port", default=None, type=int, help="Port to bind (default: APP_PORT)")
@click.option("--workers", default=1, type=int, help="Number of worker processes")
@click.option("--access-log/--no-access-log", default=True, help="Enable access logging")
def prod(host: str | None, port: int | None, workers: int, access_log: bool) -> None:
    """Run production server (no auto-reload).

    Circuit breakers and the in-memory retry queue live in the process, so
    more than one worker splits that state.
    """
    settings = get_app_settings()
    host = host or settings.host
    port = port or settings.port

    if workers > 1:
        warning("Each worker keeps its own circuit breakers and in-memory retry queue")

    info(f"Server will run at: http://{host}:{port}")
    info(f"Environment: {settings.environment}")
    info(f"Workers: {workers}")

    cmd = [
        "uvicorn",
        APP_PATH,
        "--host",
        host,
        "--port",
        str(port),
        "--workers",
        str(workers),
        "--log-level",
        "info",
    ]
    if not access_log:
        cmd.append("--no-access-log")

    _run(cmd)


def _run(cmd: list[str]) -> None:
    success("Starting uvicorn...")
    try:
        subprocess.run(cmd, check=False)
    except KeyboardInterrupt:
        info("\nShutting down server...")
    except OSError as e:
        error(f"Failed to start server: {e}")
        sys.exit(1)
