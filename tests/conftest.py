"""Shared pytest fixtures for Calboard."""

from __future__ import annotations

import functools
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from calboard import api, identity
from calboard.backend import BackendInit, build_backend
from calboard.config import DEFAULT_EVENT_TYPES, BackendConfig, Settings
from calboard.storage import init_db

PASSWORD = "correct-horse"


def make_settings(tmp_path: Path, **overrides) -> Settings:
    backend = BackendConfig(
        api_key="test-api-key",
        auth_domain="localhost",
        project_id="calboard-test",
        app_id="web-test",
        database_url="sqlite+pysqlite:///:memory:",
        session_secret="test-session-secret-with-enough-bytes",
    )
    values = dict(
        base_dir=tmp_path,
        config_path=tmp_path / "calboard.toml",
        backend=backend,
        app_host="127.0.0.1",
        app_port=8000,
        session_ttl_hours=168,
        session_purge_interval_hours=6,
        max_failed_sign_ins=3,
        sign_in_lockout_minutes=15,
        min_password_length=6,
        event_types=DEFAULT_EVENT_TYPES,
        enable_scheduler=False,
        cookie_secure=False,
        seed_users=2,
        seed_events_per_user=2,
        seed_invitations=1,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Keep PBKDF2 cheap; verification reads the iteration count from the hash."""
    monkeypatch.setattr(
        identity,
        "hash_password",
        functools.partial(identity.hash_password, iterations=1_000),
    )


@pytest.fixture()
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture()
def engine():
    """A fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    yield engine
    engine.dispose()


@pytest.fixture()
def backend(settings, engine):
    client = build_backend(settings, engine=engine)
    init_db(client.engine, client.factory, api_key=settings.backend.api_key)
    yield client
    client.dispose()


@pytest.fixture()
def client(monkeypatch, settings, backend):
    """FastAPI test client wired to the per-test backend, scheduler disabled."""
    monkeypatch.setattr(api, "load_settings", lambda: settings)
    monkeypatch.setattr(
        api, "connect_backend", lambda _settings: BackendInit(client=backend)
    )
    monkeypatch.setattr(api, "start_scheduler", lambda _backend: None)
    monkeypatch.setattr(api, "stop_scheduler", lambda _scheduler: None)
    with TestClient(api.app) as test_client:
        yield test_client


def create_account(
    backend,
    *,
    email: str = "ada@example.com",
    password: str = PASSWORD,
    display_name: str = "Ada",
):
    with backend.session() as db:
        user = backend.identity.create_user(db, email=email, password=password)
        backend.identity.update_profile(db, user, display_name=display_name)
    return user


@pytest.fixture()
def user(backend):
    return create_account(backend)


@pytest.fixture()
def other_user(backend):
    return create_account(backend, email="grace@example.com", display_name="Grace")


def sign_in(client, email: str = "ada@example.com", password: str = PASSWORD):
    response = client.post(
        "/login",
        data={"email": email, "password": password},
        follow_redirects=False,
    )
    assert response.status_code == 303, response.text
    return response
