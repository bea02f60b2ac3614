"""Shared FastAPI dependencies, templates and notices."""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import Depends, Request, Response
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError

from .backend import INIT_ERROR_MESSAGE, BackendClient, BackendInit
from .config import Settings
from .models import User
from .utils import format_event_date, humanize_time, parse_instant

logger = logging.getLogger("uvicorn.error")

SESSION_COOKIE = "calboard_session"
AUTH_CHECK_FAILED = "We could not check your sign-in state. Reload the page to try again."

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def _relative_date(raw: str | None) -> str:
    return humanize_time(parse_instant(raw))


templates.env.filters["event_date"] = format_event_date
templates.env.filters["relative_date"] = _relative_date

# Transient notifications shown after a redirect, keyed by ``?notice=``.
NOTICES: dict[str, dict[str, str]] = {
    "created": {"title": "Event created", "message": "The new event was added."},
    "updated": {"title": "Event updated", "message": "The event was updated."},
    "deleted": {"title": "Event deleted", "message": "The event was removed."},
    "registered": {
        "title": "Welcome",
        "message": "Your account was created.",
    },
    "registered-sign-in": {
        "title": "Account created",
        "message": "Your account was created. Sign in to continue.",
    },
    "signed-in": {"title": "Signed in", "message": "Welcome back."},
    "signed-out": {"title": "Signed out", "message": "You have been signed out."},
}


def notice_for(key: str | None) -> dict[str, str] | None:
    if not key or key not in NOTICES:
        return None
    return {**NOTICES[key], "variant": "success"}


def error_notification(message: str, title: str = "Error") -> dict[str, str]:
    return {"title": title, "message": message, "variant": "danger"}


class BackendUnavailableError(Exception):
    """The backend client failed to initialize at startup."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or INIT_ERROR_MESSAGE)
        self.message = message or INIT_ERROR_MESSAGE


class LoginRequiredError(Exception):
    """No live session accompanies a request to a gated route."""


class AuthCheckFailedError(Exception):
    """The identity provider could not be asked about the session."""


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_backend(request: Request) -> BackendClient:
    init: BackendInit | None = getattr(request.app.state, "backend_init", None)
    if init is None or not init.ok:
        raise BackendUnavailableError(init.error if init else None)
    return init.client


def session_token(request: Request) -> str | None:
    return request.cookies.get(SESSION_COOKIE)


def current_user(
    request: Request, backend: BackendClient = Depends(get_backend)
) -> User | None:
    try:
        return backend.identity.current_user(session_token(request))
    except SQLAlchemyError as exc:
        logger.exception("Session check failed for %s", request.url.path)
        raise AuthCheckFailedError() from exc


def require_user(user: User | None = Depends(current_user)) -> User:
    if user is None:
        raise LoginRequiredError()
    return user


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    domain = settings.backend.auth_domain
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=int(settings.session_ttl.total_seconds()),
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        domain=None if not domain or domain == "localhost" else domain,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    domain = settings.backend.auth_domain
    response.delete_cookie(
        SESSION_COOKIE,
        domain=None if not domain or domain == "localhost" else domain,
    )


def no_cache(response: Response) -> Response:
    """Prevent clients from caching dynamic pages so fresh data is shown."""
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response
