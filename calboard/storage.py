"""Database initialization and helpers."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .models import Meta
from .utils import utcnow

PROJECT_KEY = "project_api_key"


def init_db(engine: Engine, factory: sessionmaker, *, api_key: str) -> None:
    upgrade_database(engine, make_backup=False)
    ensure_project_key(factory, api_key)


def _alembic_config(engine: Engine) -> Config:
    config = Config()
    config.set_main_option(
        "script_location", str(Path(__file__).resolve().parent / "alembic")
    )
    # configparser interpolates "%"; percent-encoded URLs must be escaped.
    url = engine.url.render_as_string(hide_password=False)
    config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    config.attributes["engine"] = engine
    return config


def _sqlite_file(engine: Engine) -> Path | None:
    if engine.dialect.name != "sqlite":
        return None
    database = engine.url.database
    if not database or database == ":memory:":
        return None
    return Path(database)


def upgrade_database(engine: Engine, *, make_backup: bool = True) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions; empty if already up-to-date.
    """
    actions: list[str] = []
    db_path = _sqlite_file(engine)

    if make_backup and db_path is not None and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("event")
    config = _alembic_config(engine)

    if not has_alembic and not has_events:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    elif not has_alembic:
        # Tables created outside Alembic: baseline them.
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")

    return actions


def ensure_project_key(factory: sessionmaker, api_key: str) -> str:
    """Record the project API key on first start and return the stored key."""
    with session_scope(factory) as session:
        existing = session.get(Meta, PROJECT_KEY)
        if existing:
            return existing.value
        session.merge(Meta(key=PROJECT_KEY, value=api_key, updated_at=utcnow()))
        return api_key


def fetch_project_key(factory: sessionmaker) -> str | None:
    with session_scope(factory) as session:
        meta = session.get(Meta, PROJECT_KEY)
        return meta.value if meta else None


def rotate_project_key(factory: sessionmaker, api_key: str) -> str:
    """Replace the stored project key, e.g. after the credential changed."""
    with session_scope(factory) as session:
        session.merge(Meta(key=PROJECT_KEY, value=api_key, updated_at=utcnow()))
    return api_key
