"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError

from .backend import BackendClient

logger = logging.getLogger("uvicorn.error")


def purge_sessions_job(backend: BackendClient) -> int:
    try:
        return backend.identity.purge_sessions()
    except SQLAlchemyError:
        logger.exception("Scheduled session purge failed")
        return 0


def start_scheduler(backend: BackendClient) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        purge_sessions_job,
        "interval",
        args=[backend],
        hours=backend.settings.session_purge_interval_hours,
        id="purge-sessions",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    return scheduler


def stop_scheduler(scheduler: BackgroundScheduler | None) -> None:
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
