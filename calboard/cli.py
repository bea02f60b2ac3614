"""Typer CLI for Calboard."""

from __future__ import annotations

import json

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .backend import BackendClient, connect_backend
from .config import load_settings, settings_as_dict
from .crud import create_invitation, list_invitations
from .database import create_backend_engine
from .seed import SEED_PASSWORD, seed_fake_data
from .storage import rotate_project_key, upgrade_database

app = typer.Typer(help="Calboard command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _fail(message: str) -> None:
    typer.secho(message, err=True, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _backend() -> BackendClient:
    """Connect to the configured backend or exit with the init error."""
    settings = load_settings()
    init = connect_backend(settings)
    if not init.ok:
        missing = settings.backend.missing()
        detail = f" Missing: {', '.join(missing)}." if missing else ""
        _fail(f"{init.error}{detail}")
    return init.client


@app.command("init-db")
def init_db_command() -> None:
    """Create or upgrade the schema and record the project key."""
    backend = _backend()
    backend.dispose()
    typer.echo("Database ready.")


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of a SQLite database before upgrading",
    ),
) -> None:
    """Upgrade the database schema if needed."""
    settings = load_settings()
    url = settings.backend.database_url
    if not url:
        _fail("CALBOARD_DATABASE_URL is not set.")
    engine = create_backend_engine(url)
    try:
        actions = upgrade_database(engine, make_backup=not no_backup)
    except OperationalError as exc:
        message = str(getattr(exc, "orig", exc)).lower()
        if "readonly" in message or "read-only" in message:
            _fail(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {engine.url.database}."
            )
        raise
    finally:
        engine.dispose()

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("invite")
def invite(
    count: int = typer.Option(1, "--count", min=1, help="Number of invitations"),
    note: str | None = typer.Option(None, "--note", help="Who the invitation is for"),
) -> None:
    """Create single-use invitations and print their ids."""
    backend = _backend()
    try:
        with backend.session() as session:
            ids = [create_invitation(session, note=note).id for _ in range(count)]
    finally:
        backend.dispose()
    for invitation_id in ids:
        typer.echo(f"{invitation_id}\t/register?uid={invitation_id}")


@app.command("invitations")
def invitations(
    unused: bool = typer.Option(False, "--unused", help="Only list unused invitations"),
) -> None:
    """List invitations and whether they were redeemed."""
    backend = _backend()
    try:
        with backend.session() as session:
            rows = [
                {
                    "id": inv.id,
                    "used": inv.used,
                    "used_by": inv.used_by,
                    "used_at": inv.used_at.isoformat() if inv.used_at else None,
                    "note": inv.note,
                }
                for inv in list_invitations(session, unused_only=unused)
            ]
    finally:
        backend.dispose()
    if not rows:
        typer.echo("No invitations found.")
        return
    for row in rows:
        status = f"used by {row['used_by']} at {row['used_at']}" if row["used"] else "unused"
        note = f" ({row['note']})" if row["note"] else ""
        typer.echo(f"{row['id']}\t{status}{note}")


@app.command("purge-sessions")
def purge_sessions() -> None:
    """Delete expired and revoked sessions."""
    backend = _backend()
    try:
        removed = backend.identity.purge_sessions()
    finally:
        backend.dispose()
    typer.echo(f"Removed {removed} sessions.")


@app.command("rotate-project-key")
def rotate_project_key_command() -> None:
    """Store the configured API key as the project key."""
    settings = load_settings()
    init = connect_backend(settings, migrate=False)
    if not init.ok:
        _fail(init.error)
    backend = init.client
    try:
        stored = rotate_project_key(backend.factory, settings.backend.api_key)
    finally:
        backend.dispose()
    typer.echo(f"Project key updated ({len(stored)} characters).")


@app.command("runserver")
def runserver(
    host: str | None = typer.Option(None, "--host", help="Host to bind"),
    port: int | None = typer.Option(None, "--port", help="Port to bind"),
):
    """Start FastAPI; the app starts its own scheduler."""
    settings = load_settings()
    host = host or settings.app_host
    port = port or settings.app_port
    config = uvicorn.Config(
        "calboard.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Calboard on {host}:{port}")
    server.run()


@app.command("seed-data")
def seed_data(
    users: int | None = typer.Option(None, "--users", min=0, help="Accounts to create"),
    max_events: int | None = typer.Option(
        None, "--max-events", min=1, help="Maximum events per account"
    ),
    invitations_count: int | None = typer.Option(
        None, "--invitations", min=0, help="Unused invitations to create"
    ),
):
    """Populate the database with fake accounts, events and invitations."""
    settings = load_settings()
    backend = _backend()
    try:
        stats = seed_fake_data(
            backend,
            user_count=settings.seed_users if users is None else users,
            max_events_per_user=max_events or settings.seed_events_per_user,
            invitation_count=(
                settings.seed_invitations if invitations_count is None else invitations_count
            ),
        )
    finally:
        backend.dispose()
    typer.echo(
        f"Seed complete: {stats['users']} users, {stats['events']} events, "
        f"{stats['invitations']} invitations created. "
        f"Seeded accounts use the password '{SEED_PASSWORD}'."
    )


@app.command("show-config")
def show_config() -> None:
    """Show the effective configuration with secrets masked."""
    typer.echo(json.dumps(settings_as_dict(load_settings()), indent=2))


if __name__ == "__main__":
    app()
