"""Explicitly constructed backend client.

The application builds exactly one :class:`BackendClient` at startup and
hands it to the routes through ``app.state``. Construction never raises:
:func:`connect_backend` reports failure through :class:`BackendInit` so the
web layer can render an initialization-error page instead of crashing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from alembic.util.exc import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import Settings
from .database import create_backend_engine, make_session_factory, session_scope
from .identity import IdentityProvider
from .storage import init_db
from .sync import EventChannel

logger = logging.getLogger("uvicorn.error")

INIT_ERROR_MESSAGE = (
    "The calendar backend is not initialized. Check the CALBOARD_* "
    "environment variables."
)

CONFIG_ERROR_MESSAGE = (
    "The calendar configuration could not be read. Check the CALBOARD_* "
    "environment variables and calboard.toml."
)


@dataclass
class BackendClient:
    settings: Settings
    engine: Engine
    factory: sessionmaker
    identity: IdentityProvider
    events: EventChannel
    _teardown: list[Callable[[], None]] = field(default_factory=list, repr=False)

    def session(self):
        """Transaction scope: commits on success, rolls back on error."""
        return session_scope(self.factory)

    def dispose(self) -> None:
        for callback in reversed(self._teardown):
            callback()
        self._teardown.clear()
        self.events.close()
        self.engine.dispose()


@dataclass(frozen=True)
class BackendInit:
    client: BackendClient | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.client is not None


def build_backend(settings: Settings, *, engine: Engine | None = None) -> BackendClient:
    """Wire the identity provider and event channel around one engine."""
    config = settings.backend
    engine = engine or create_backend_engine(config.database_url)
    factory = make_session_factory(engine)
    identity = IdentityProvider(
        factory,
        api_key=config.api_key,
        project_id=config.project_id,
        app_id=config.app_id,
        session_secret=config.session_secret,
        session_ttl=settings.session_ttl,
        max_failed_sign_ins=settings.max_failed_sign_ins,
        lockout=settings.sign_in_lockout,
        min_password_length=settings.min_password_length,
    )
    events = EventChannel(factory)
    client = BackendClient(
        settings=settings,
        engine=engine,
        factory=factory,
        identity=identity,
        events=events,
    )

    def _drop_streams(user_id: str, signed_in: bool) -> None:
        if not signed_in:
            events.close_user(user_id)

    client._teardown.append(identity.on_auth_state_changed(_drop_streams))
    return client


def connect_backend(
    settings: Settings, *, engine: Engine | None = None, migrate: bool = True
) -> BackendInit:
    """Build the backend client and prepare its schema.

    Returns a failed :class:`BackendInit` (never raises) when configuration
    is incomplete or the database cannot be prepared.
    """
    missing = settings.backend.missing()
    if missing:
        logger.error(
            "Backend initialization skipped; missing configuration: %s",
            ", ".join(missing),
        )
        return BackendInit(client=None, error=INIT_ERROR_MESSAGE)

    client = None
    try:
        client = build_backend(settings, engine=engine)
        if migrate:
            init_db(client.engine, client.factory, api_key=settings.backend.api_key)
    except (SQLAlchemyError, CommandError, OSError, ValueError):
        logger.exception("Backend initialization failed")
        if client is not None:
            client.dispose()
        return BackendInit(client=None, error=INIT_ERROR_MESSAGE)

    logger.info("Backend ready for project %s", settings.backend.project_id)
    return BackendInit(client=client)
