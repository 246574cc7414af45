"""Typer CLI for EventHub."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import NoReturn

import typer
import uvicorn
from sqlalchemy.exc import OperationalError

from . import config
from .crud import create_user
from .database import dispose_engine, get_session
from .errors import EventHubError
from .schemas import MIN_PASSWORD_LENGTH
from .seed import seed_fake_data
from .storage import init_db, upgrade_database

app = typer.Typer(help="EventHub command-line interface", no_args_is_help=True)


def _fail(message: str) -> NoReturn:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.callback()
def main(ctx: typer.Context) -> None:
    """Manage the EventHub API server and its database."""
    ctx.call_on_close(dispose_engine)


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False, "--no-backup", help="Do not copy the SQLite file to .bak first"
    ),
) -> None:
    """Create the schema or migrate it to the latest revision."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        reason = str(getattr(exc, "orig", exc)).lower()
        if "readonly" not in reason and "read-only" not in reason:
            raise
        _fail(
            "The database is read-only; check write access to "
            f"{config.settings.database_url}"
        )
    typer.echo("\n".join(["Database upgrade complete:", *(f"- {a}" for a in actions)]))


@app.command("runserver")
def runserver(
    host: str | None = typer.Option(None, "--host", help="Host to bind"),
    port: int | None = typer.Option(None, "--port", help="Port to bind"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Serve the JSON API with uvicorn."""
    current = config.settings
    host = host or current.app_host
    port = port or current.app_port
    typer.echo(f"EventHub API listening on http://{host}:{port}")
    uvicorn.run(
        "eventhub.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=current.log_level,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


@app.command("create-admin")
def create_admin(
    username: str = typer.Argument(..., help="Username for the new admin"),
    email: str = typer.Argument(..., help="Email address for the new admin"),
    password: str = typer.Option(
        ...,
        "--password",
        prompt=True,
        hide_input=True,
        confirmation_prompt=True,
        help="Password (prompted when omitted)",
    ),
) -> None:
    """Create an administrator account without an invite key."""
    if len(password) < MIN_PASSWORD_LENGTH:
        _fail(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    init_db()
    try:
        with get_session() as session:
            user = create_user(
                session, username=username, email=email, password=password, role="admin"
            )
            user_id = user.id
    except EventHubError as exc:
        _fail(str(exc))
    typer.echo(f"Created admin {username} (id {user_id})")


@app.command("seed-data")
def seed_data(
    users: int | None = typer.Option(None, "--users", min=1, help="Users to create"),
    events: int | None = typer.Option(None, "--events", min=0, help="Events to create"),
    max_rsvps: int | None = typer.Option(
        None, "--max-rsvps", min=0, help="Upper bound on RSVPs per event"
    ),
) -> None:
    """Fill the database with fake users, events, and RSVPs."""
    current = config.settings
    stats = seed_fake_data(
        user_count=current.seed_users if users is None else users,
        event_count=current.seed_events if events is None else events,
        max_rsvps_per_event=(
            current.seed_rsvps_per_event if max_rsvps is None else max_rsvps
        ),
    )
    typer.echo(
        "Seeded {users} users, {events} events and {registrations} RSVPs".format(**stats)
    )


@app.command("config")
def configure(
    show: bool = typer.Option(False, "--show", help="Print the effective settings"),
    reveal: bool = typer.Option(
        False, "--reveal-secrets", help="Print the admin invite key unmasked"
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Config file (default: ./eventhub.toml)"
    ),
    database_url: str | None = typer.Option(None, "--database-url"),
    admin_invite_key: str | None = typer.Option(None, "--admin-invite-key"),
    frontend_url: str | None = typer.Option(None, "--frontend-url"),
    allow_localhost_origins: bool | None = typer.Option(
        None,
        "--allow-localhost-origins/--deny-localhost-origins",
        help="Accept any localhost origin for CORS",
    ),
    app_host: str | None = typer.Option(None, "--host"),
    app_port: int | None = typer.Option(None, "--port"),
    log_level: str | None = typer.Option(None, "--log-level"),
    seed_users: int | None = typer.Option(None, "--seed-users", min=1),
    seed_events: int | None = typer.Option(None, "--seed-events", min=0),
    seed_rsvps_per_event: int | None = typer.Option(
        None, "--seed-rsvps-per-event", min=0
    ),
) -> None:
    """Show or change the settings stored in the config file.

    Options that are given are written to the file; with none given the
    effective settings are printed.
    """
    candidates = {
        "database_url": database_url,
        "admin_invite_key": admin_invite_key,
        "frontend_url": frontend_url,
        "allow_localhost_origins": allow_localhost_origins,
        "app_host": app_host,
        "app_port": app_port,
        "log_level": log_level,
        "seed_users": seed_users,
        "seed_events": seed_events,
        "seed_rsvps_per_event": seed_rsvps_per_event,
    }
    provided = {key: value for key, value in candidates.items() if value is not None}
    target = config_path or config.settings.config_path
    if provided:
        effective = config.update_config_file(provided, path=target)
        typer.echo(f"Wrote {', '.join(sorted(provided))} to {target}")
    else:
        effective = config.load_settings(target)
    if show or not provided:
        payload = config.settings_as_dict(effective, mask_secrets=not reveal)
        payload["config_path"] = str(target)
        typer.echo(json.dumps(payload, indent=2))


@app.command(
    "test", context_settings={"allow_extra_args": True, "ignore_unknown_options": True}
)
def run_tests(ctx: typer.Context) -> None:
    """Run the pytest suite; extra arguments are passed through."""
    runner = shutil.which("uv")
    cmd = [runner, "run", "pytest"] if runner else [sys.executable, "-m", "pytest"]
    cmd += ctx.args
    env = {**os.environ, "PYTHONPATH": os.environ.get("PYTHONPATH", ".")}
    typer.echo(f"$ {' '.join(cmd)}")
    raise typer.Exit(code=subprocess.call(cmd, env=env))


if __name__ == "__main__":
    app()
