"""Typer CLI for GuestPass."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .checkin import check_in
from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .database import get_session
from .errors import ValidationError
from .storage import init_db, upgrade_database

app = typer.Typer(help="GuestPass command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _exit_if_readonly(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure write access to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("init-db")
def init_database() -> None:
    """Create the database schema if it does not exist yet."""
    try:
        init_db()
    except OperationalError as exc:
        _exit_if_readonly(exc, "initialize the database")
        raise
    typer.echo(f"Database ready at {settings.database_url}")


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI server."""
    init_db()
    if not settings.email_enabled:
        typer.secho(
            "GUESTPASS_RESEND_API_KEY is not configured; invitation emails are disabled.",
            fg=typer.colors.YELLOW,
        )
    config = uvicorn.Config(
        "guestpass.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting GuestPass on {host}:{port}")
    server.run()


@app.command("check-in")
def check_in_command(
    payload: str = typer.Argument(..., help="Scanned QR payload or invitation token"),
) -> None:
    """Check a participant in from a scanned QR payload."""
    init_db()
    try:
        with get_session() as session:
            result = check_in(session, payload)
    except ValidationError as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)

    color = typer.colors.GREEN if result.success else typer.colors.YELLOW
    typer.secho(result.message, fg=color)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    from_email: str | None = typer.Option(
        None, "--resend-from-email", help="Sender address for invitation emails"
    ),
    from_name: str | None = typer.Option(
        None, "--resend-from-name", help="Sender display name for invitation emails"
    ),
    api_url: str | None = typer.Option(
        None, "--resend-api-url", help="Base URL of the Resend API"
    ),
    email_timeout: float | None = typer.Option(
        None, "--email-timeout", min=0.1, help="Seconds to wait for the email API"
    ),
    public_base_url: str | None = typer.Option(
        None,
        "--public-base-url",
        help="Absolute origin used to build invitation links",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to guestpass.toml (default: ./guestpass.toml)"
    ),
):
    """View or update the persistent configuration file.

    The Resend API key is only read from the environment and never written here.
    """

    updates = {
        "resend_from_email": from_email,
        "resend_from_name": from_name,
        "resend_api_url": api_url,
        "email_timeout_seconds": email_timeout,
        "public_base_url": public_base_url,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()
