from __future__ import annotations

from dataclasses import replace

from calboard import backend as backend_module
from calboard.backend import INIT_ERROR_MESSAGE, connect_backend
from calboard.config import BackendConfig
from calboard.scheduler import purge_sessions_job, start_scheduler, stop_scheduler
from calboard.seed import SEED_PASSWORD, seed_fake_data


def test_connect_backend_reports_missing_configuration(settings):
    incomplete = replace(
        settings, backend=BackendConfig(None, None, None, None, None, None)
    )
    init = connect_backend(incomplete)
    assert not init.ok
    assert init.error == INIT_ERROR_MESSAGE


def test_connect_backend_prepares_database(settings, tmp_path):
    configured = replace(
        settings,
        backend=replace(
            settings.backend, database_url=f"sqlite:///{tmp_path / 'calboard.sqlite'}"
        ),
    )
    init = connect_backend(configured)
    try:
        assert init.ok
        assert init.client.events.refresh().events == ()
    finally:
        init.client.dispose()


def test_connect_backend_never_raises_on_database_failure(settings, monkeypatch):
    def broken_init_db(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr(backend_module, "init_db", broken_init_db)
    init = connect_backend(settings)
    assert not init.ok
    assert init.error == INIT_ERROR_MESSAGE


def test_scheduler_registers_session_purge(backend):
    scheduler = start_scheduler(backend)
    try:
        job = scheduler.get_job("purge-sessions")
        assert job is not None
        assert job.trigger.interval.total_seconds() == 6 * 3600
    finally:
        stop_scheduler(scheduler)
    assert not scheduler.running
    assert purge_sessions_job(backend) == 0


def test_seed_fake_data_creates_signable_accounts(backend):
    stats = seed_fake_data(
        backend, user_count=2, max_events_per_user=2, invitation_count=3
    )
    assert stats["users"] == 2
    assert 2 <= stats["events"] <= 4
    assert stats["invitations"] == 3
    assert len(backend.events.snapshot.events) == stats["events"]

    first = backend.events.snapshot.events[0]
    with backend.session() as db:
        email = backend.identity.get_user(db, first.user_id).email
    assert backend.identity.sign_in(email=email, password=SEED_PASSWORD)
