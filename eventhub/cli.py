"""Typer CLI for EventHub."""

from __future__ import annotations

import json
from pathlib import Path

import typer
import uvicorn
from sqlalchemy.exc import OperationalError

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import create_user as create_user_record
from .crud import get_user_by_email, rotate_user_token
from .database import get_session
from .errors import EventValidationError
from .membership import reconcile_attendee_counts
from .scheduler import start_scheduler, stop_scheduler
from .seed import seed_fake_data
from .storage import init_db, upgrade_database, vacuum_database

app = typer.Typer(help="EventHub command-line interface")


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


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        _exit_if_readonly(exc, "upgrade")
        raise

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("vacuum")
def vacuum() -> None:
    """Run SQLite VACUUM manually."""
    init_db()
    vacuum_database()
    typer.echo("Database vacuum complete.")


@app.command("reconcile")
def reconcile() -> None:
    """Recompute attendee counts that drifted from the attendee rows."""
    init_db()
    with get_session() as session:
        corrected = reconcile_attendee_counts(session)
    typer.echo(f"Reconcile complete: {corrected} event(s) corrected.")


@app.command("create-user")
def create_user(
    name: str = typer.Argument(..., help="Display name (2-50 characters)"),
    email: str = typer.Argument(..., help="Unique email address"),
) -> None:
    """Register a user and print their bearer token."""
    init_db()
    try:
        with get_session() as session:
            user = create_user_record(session, name=name, email=email)
            token = user.api_token
    except EventValidationError as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    except OperationalError as exc:
        _exit_if_readonly(exc, "create the user")
        raise
    typer.echo(token)


@app.command("user-token")
def user_token(
    email: str = typer.Argument(..., help="Email of an existing user"),
    rotate: bool = typer.Option(False, "--rotate", help="Issue a new token first"),
) -> None:
    """Print (or rotate) a user's bearer token."""
    init_db()
    with get_session() as session:
        user = get_user_by_email(session, email)
        if not user:
            typer.secho(f"No user registered as {email}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        token = rotate_user_token(session, user) if rotate else user.api_token
    typer.echo(token)


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start FastAPI with APScheduler."""
    init_db()
    if settings.enable_scheduler:
        start_scheduler()
    config = uvicorn.Config(
        "eventhub.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting EventHub on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


@app.command("seed-data")
def seed_data(
    users: int = typer.Option(
        settings.seed_users, "--users", min=1, help="Number of users to create"
    ),
    events: int = typer.Option(
        settings.seed_events, "--events", min=0, help="Number of events to create"
    ),
    max_joins: int = typer.Option(
        settings.seed_joins_per_event,
        "--max-joins",
        min=0,
        help="Maximum users joining each event",
    ),
):
    """Populate the database with fake users, events and joins for testing."""
    stats = seed_fake_data(
        user_count=users,
        event_count=events,
        max_joins_per_event=max_joins,
    )
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['joins']} joins created."
    )


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    events_per_page: int | None = typer.Option(
        None, "--events-per-page", min=1, help="Default listing page size"
    ),
    max_page_size: int | None = typer.Option(
        None, "--max-page-size", min=1, help="Largest page size a client may request"
    ),
    vacuum_hours: int | None = typer.Option(
        None, "--vacuum-hours", min=1, help="Hours between SQLite VACUUM runs"
    ),
    reconcile_hours: int | None = typer.Option(
        None, "--reconcile-hours", min=1, help="Hours between attendee count checks"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background scheduler (reconcile/vacuum)",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    seed_users: int | None = typer.Option(
        None, "--seed-users", min=1, help="Default seed-data users"
    ),
    seed_events: int | None = typer.Option(
        None, "--seed-events", min=0, help="Default seed-data events"
    ),
    seed_joins_per_event: int | None = typer.Option(
        None, "--seed-joins-per-event", min=0, help="Default seed-data joins per event"
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventhub.toml (default: ./eventhub.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "events_per_page": events_per_page,
        "max_page_size": max_page_size,
        "sqlite_vacuum_hours": vacuum_hours,
        "reconcile_interval_hours": reconcile_hours,
        "enable_scheduler": enable_scheduler,
        "app_host": host,
        "app_port": port,
        "seed_users": seed_users,
        "seed_events": seed_events,
        "seed_joins_per_event": seed_joins_per_event,
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
