"""Alembic environment for Calboard; migrations run on the backend's engine."""

from __future__ import annotations

from alembic import context
from sqlalchemy import create_engine

from calboard.models import Base

config = context.config


def _connectable():
    engine = config.attributes.get("engine")
    if engine is not None:
        return engine
    return create_engine(config.get_main_option("sqlalchemy.url"), future=True)


def run_migrations() -> None:
    with _connectable().connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=Base.metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    raise RuntimeError("Calboard migrations need a live database connection.")
run_migrations()
