"""Landing, sign-in and registration routes for Calboard."""

from __future__ import annotations

import logging

from fastapi import Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from .backend import BackendClient
from .dependencies import (
    clear_session_cookie,
    error_notification,
    get_backend,
    get_settings,
    notice_for,
    no_cache,
    session_token,
    set_session_cookie,
    templates,
)
from .identity import IdentityError
from .invitations import RegistrationError, check_invitation, register_account

logger = logging.getLogger("uvicorn.error")

SIGN_IN_FAILED = "Sign-in failed."
SIGN_IN_MESSAGES = {
    "auth/invalid-email": "The email address is not valid.",
    "auth/user-not-found": "The email address or password is incorrect.",
    "auth/wrong-password": "The email address or password is incorrect.",
    "auth/too-many-requests": "Too many sign-in attempts. Wait a while and try again.",
    "auth/api-key-not-valid": "The service API key is not valid. Check the server configuration.",
}


def landing(request: Request):
    """Render the invitation-only landing page."""
    init = getattr(request.app.state, "backend_init", None)
    signed_in = False
    if init is not None and init.ok:
        try:
            signed_in = init.client.identity.current_user(session_token(request)) is not None
        except SQLAlchemyError:
            logger.exception("Session check failed on the landing page")
    return templates.TemplateResponse(
        request,
        "landing.html",
        {"request": request, "signed_in": signed_in},
    )


def login_page(
    request: Request,
    notice: str | None = Query(None),
    backend: BackendClient = Depends(get_backend),
):
    return no_cache(
        templates.TemplateResponse(
            request,
            "login.html",
            {"request": request, "email": "", "notification": notice_for(notice)},
        )
    )


def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    backend: BackendClient = Depends(get_backend),
):
    try:
        signed_in = backend.identity.sign_in(email=email, password=password)
    except IdentityError as exc:
        message = SIGN_IN_MESSAGES.get(exc.code, SIGN_IN_FAILED)
        status_code = 429 if exc.code == "auth/too-many-requests" else 401
        return _login_error(request, email, message, status_code)
    except SQLAlchemyError:
        logger.exception("Sign-in failed unexpectedly")
        return _login_error(request, email, SIGN_IN_FAILED, 500)

    response = RedirectResponse("/dashboard?notice=signed-in", status_code=303)
    set_session_cookie(response, signed_in.token, get_settings(request))
    return response


def _login_error(request: Request, email: str, message: str, status_code: int):
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "request": request,
            "email": email,
            "error": message,
            "notification": error_notification(message, "Sign-in failed"),
        },
        status_code=status_code,
    )


def logout(request: Request, backend: BackendClient = Depends(get_backend)):
    try:
        backend.identity.sign_out(session_token(request))
    except SQLAlchemyError:
        logger.exception("Sign-out could not revoke the session")
    response = RedirectResponse("/login?notice=signed-out", status_code=303)
    clear_session_cookie(response, get_settings(request))
    return response


def register_page(
    request: Request,
    uid: str | None = Query(None),
    backend: BackendClient = Depends(get_backend),
):
    check = check_invitation(backend, uid)
    if not check.valid:
        return _invalid_invitation(request, check.error)
    return no_cache(
        templates.TemplateResponse(
            request,
            "register.html",
            {"request": request, "uid": uid, "email": "", "display_name": ""},
        )
    )


def register_submit(
    request: Request,
    uid: str | None = Query(None),
    email: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    display_name: str = Form(""),
    backend: BackendClient = Depends(get_backend),
):
    check = check_invitation(backend, uid)
    try:
        user_id = register_account(
            backend,
            invitation_id=uid,
            invitation_valid=check.valid,
            email=email,
            password=password,
            confirm_password=confirm_password,
            display_name=display_name,
        )
    except RegistrationError as exc:
        return templates.TemplateResponse(
            request,
            "register.html",
            {
                "request": request,
                "uid": uid,
                "email": email,
                "display_name": display_name,
                "error": str(exc),
                "notification": error_notification(str(exc), "Registration failed"),
            },
            status_code=400,
        )

    settings = get_settings(request)
    try:
        token = backend.identity.start_session(user_id)
    except (IdentityError, SQLAlchemyError):
        logger.exception("Could not start a session for new user %s", user_id)
        return RedirectResponse("/login?notice=registered-sign-in", status_code=303)
    response = RedirectResponse("/dashboard?notice=registered", status_code=303)
    set_session_cookie(response, token, settings)
    return response


def _invalid_invitation(request: Request, error: str | None):
    return templates.TemplateResponse(
        request,
        "invitation_invalid.html",
        {"request": request, "error": error},
        status_code=404,
    )


def register_web_routes(app):
    """Register the unauthenticated routes on the FastAPI app."""
    app.get("/", response_class=HTMLResponse)(landing)
    app.get("/login", response_class=HTMLResponse)(login_page)
    app.post("/login", response_class=HTMLResponse)(login_submit)
    app.post("/logout")(logout)
    app.get("/register", response_class=HTMLResponse)(register_page)
    app.post("/register", response_class=HTMLResponse)(register_submit)
