from __future__ import annotations

from sqlalchemy import URL, create_engine, inspect, text
from sqlalchemy.engine import Engine

from calboard.database import make_session_factory
from calboard.models import Base
from calboard.storage import (
    _alembic_config,
    ensure_project_key,
    fetch_project_key,
    rotate_project_key,
    upgrade_database,
)


def _get_version(engine: Engine) -> str | None:
    with engine.connect() as conn:
        return conn.execute(text("select version_num from alembic_version")).scalar()


def test_upgrade_database_creates_fresh_schema(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'fresh.sqlite'}", future=True)

    actions = upgrade_database(engine, make_backup=False)

    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert _get_version(engine) == "0001_initial"
    inspector = inspect(engine)
    for table in ("event", "invitations", "users", "sessions", "meta"):
        assert inspector.has_table(table)
    engine.dispose()


def test_upgrade_database_stamps_existing_db(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'existing.sqlite'}", future=True)
    Base.metadata.create_all(bind=engine)

    actions = upgrade_database(engine, make_backup=False)

    assert "Stamped existing database to Alembic head" in actions
    assert _get_version(engine) == "0001_initial"
    engine.dispose()


def test_upgrade_database_backs_up_sqlite_file(tmp_path):
    db_path = tmp_path / "calboard.sqlite"
    engine = create_engine(f"sqlite:///{db_path}", future=True)
    upgrade_database(engine, make_backup=False)

    actions = upgrade_database(engine)

    assert actions[0] == f"Backup created at {db_path}.bak"
    assert "Applied Alembic migrations to head" in actions
    assert (tmp_path / "calboard.sqlite.bak").exists()
    engine.dispose()


def test_project_key_lifecycle(backend, settings):
    factory = make_session_factory(backend.engine)
    assert fetch_project_key(factory) == settings.backend.api_key
    assert ensure_project_key(factory, "ignored") == settings.backend.api_key
    rotate_project_key(factory, "next-key")
    assert fetch_project_key(factory) == "next-key"


def test_alembic_config_keeps_percent_encoded_urls(tmp_path):
    db_path = tmp_path / "cal%40board.sqlite"
    engine = create_engine(URL.create("sqlite", database=str(db_path)), future=True)
    rendered = engine.url.render_as_string(hide_password=False)
    assert "%" in rendered

    config = _alembic_config(engine)

    assert config.get_main_option("sqlalchemy.url") == rendered
    actions = upgrade_database(engine, make_backup=False)
    assert "Ran Alembic upgrade to head (fresh database)" in actions
    assert db_path.exists()
    assert _get_version(engine) == "0001_initial"
    engine.dispose()

