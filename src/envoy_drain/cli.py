from __future__ import annotations

from pathlib import Path
from typing import Any

import anyio
import typer

from .errors import ConfigError
from .logging import get_logger, setup_logging
from .server import run_server
from .settings import load_settings

logger = get_logger(__name__)

app = typer.Typer(add_completion=False, no_args_is_help=False)


def _collect_overrides(
    *,
    port: int | None,
    admin_host: str | None,
    admin_port: int | None,
    admin_scheme: str | None,
    delay: int | None,
    period: int | None,
    deadline: int | None,
    force: bool,
    log_level: str | None,
    json_logs: bool,
) -> dict[str, Any]:
    # Only flags given on the command line override env and TOML values.
    overrides: dict[str, Any] = {}
    admin = {
        key: value
        for key, value in (
            ("host", admin_host),
            ("port", admin_port),
            ("scheme", admin_scheme),
        )
        if value is not None
    }
    if admin:
        overrides["admin"] = admin
    if port is not None:
        overrides["server"] = {"port": port}
    defaults = {
        key: value
        for key, value in (("delay", delay), ("period", period), ("deadline", deadline))
        if value is not None
    }
    if defaults:
        overrides["defaults"] = defaults
    if force:
        overrides["force"] = True
    if log_level is not None:
        overrides["log_level"] = log_level.lower()
    if json_logs:
        overrides["json_logs"] = True
    return overrides


@app.command()
def serve(
    port: int | None = typer.Option(
        None, "--shutdown-handler-port", help="Port to listen on (default 9001)."
    ),
    admin_host: str | None = typer.Option(
        None, "--envoy-admin-host", help="Envoy admin interface host (default localhost)."
    ),
    admin_port: int | None = typer.Option(
        None, "--envoy-admin-port", help="Envoy admin interface port (default 9901)."
    ),
    admin_scheme: str | None = typer.Option(
        None, "--envoy-admin-scheme", help="Envoy admin interface scheme (default http)."
    ),
    delay: int | None = typer.Option(
        None,
        "--initial-delay-seconds",
        help="Delay in seconds before checking connections (default 0).",
    ),
    period: int | None = typer.Option(
        None,
        "--check-period-seconds",
        help="Seconds to pause between active connection checks (default 5).",
    ),
    deadline: int | None = typer.Option(
        None,
        "--check-deadline-seconds",
        help="Seconds to wait for active connections to close (default 300).",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Force envoy to quit once connections are drained.",
    ),
    config: Path | None = typer.Option(
        None, "--config", help="Path to a TOML config file."
    ),
    log_level: str | None = typer.Option(None, "--log-level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines."),
) -> None:
    """Run the envoy shutdown handler server."""
    overrides = _collect_overrides(
        port=port,
        admin_host=admin_host,
        admin_port=admin_port,
        admin_scheme=admin_scheme,
        delay=delay,
        period=period,
        deadline=deadline,
        force=force,
        log_level=log_level,
        json_logs=json_logs,
    )
    try:
        settings = load_settings(config, **overrides)
    except ConfigError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from None

    setup_logging(settings.log_level, json=settings.json_logs)
    try:
        anyio.run(run_server, settings)
    except KeyboardInterrupt:
        logger.info("server.stopped")


def main() -> None:
    app()
