"""FastAPI application for Calboard."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .backend import CONFIG_ERROR_MESSAGE, BackendClient, BackendInit, connect_backend
from .config import fallback_settings, load_settings
from .crud import EventNotFoundError, get_event
from .dependencies import (
    AUTH_CHECK_FAILED,
    AuthCheckFailedError,
    BackendUnavailableError,
    LoginRequiredError,
    error_notification,
    get_backend,
    get_settings,
    no_cache,
    notice_for,
    require_user,
    session_token,
    templates,
)
from .forms import (
    EventFormData,
    FormOutcome,
    submit_event_delete,
    submit_event_form,
)
from .models import User
from .partials import register_partial_routes
from .scheduler import start_scheduler, stop_scheduler
from .sync import VIEWS, EventRecord, Snapshot, available_types, select_view
from .web import register_web_routes

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

STREAM_KEEPALIVE_SECONDS = 15.0


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("calboard")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        settings = load_settings()
    except (ValueError, OSError) as exc:
        logger.error("Could not load settings: %s", exc)
        settings = fallback_settings()
        init = BackendInit(client=None, error=CONFIG_ERROR_MESSAGE)
    else:
        init = connect_backend(settings)
    app.state.settings = settings
    app.state.backend_init = init
    scheduler = None
    if init.ok and settings.enable_scheduler:
        scheduler = start_scheduler(init.client)
    try:
        yield
    finally:
        stop_scheduler(scheduler)
        if init.ok:
            init.client.dispose()


app = FastAPI(title="Calboard", version=APP_VERSION, lifespan=lifespan)
static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

templates.env.globals["app_version"] = APP_VERSION

register_web_routes(app)
register_partial_routes(app)


def _wants_json(request: Request) -> bool:
    accept = (request.headers.get("accept") or "").lower()
    return request.url.path.startswith("/api/") or (
        "application/json" in accept and "text/html" not in accept
    )


def _render_error(request: Request, status_code: int, message: str | None):
    context = {
        "request": request,
        "status_code": status_code,
        "error_message": message or "Something went wrong.",
    }
    return templates.TemplateResponse(
        request, "error.html", context, status_code=status_code
    )


@app.exception_handler(BackendUnavailableError)
async def backend_unavailable_handler(request: Request, exc: BackendUnavailableError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.message}, status_code=503)
    return templates.TemplateResponse(
        request,
        "init_error.html",
        {"request": request, "error_message": exc.message},
        status_code=503,
    )


@app.exception_handler(LoginRequiredError)
async def login_required_handler(request: Request, exc: LoginRequiredError):
    if _wants_json(request):
        return JSONResponse({"detail": "Not authenticated"}, status_code=401)
    return RedirectResponse("/login", status_code=303)


@app.exception_handler(AuthCheckFailedError)
async def auth_check_failed_handler(request: Request, exc: AuthCheckFailedError):
    if _wants_json(request):
        return JSONResponse({"detail": AUTH_CHECK_FAILED}, status_code=503)
    return _render_error(request, 503, AUTH_CHECK_FAILED)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as friendly pages unless JSON was requested."""
    if _wants_json(request):
        return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
    detail = exc.detail if isinstance(exc.detail, str) else "Something went wrong."
    return _render_error(request, exc.status_code, detail)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "Database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    if _wants_json(request):
        return JSONResponse({"detail": detail}, status_code=status)
    return _render_error(request, status, detail)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    if _wants_json(request):
        return JSONResponse({"detail": exc.errors()}, status_code=422)
    return _render_error(
        request,
        422,
        "Some of the fields were invalid. Please double-check and try again.",
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    if _wants_json(request):
        return JSONResponse({"detail": "Internal server error"}, status_code=500)
    return _render_error(
        request,
        500,
        "We hit a snag while processing that request. Please try again.",
    )


@app.get("/healthz", include_in_schema=False)
def healthz(request: Request):
    init = getattr(request.app.state, "backend_init", None)
    ready = bool(init and init.ok)
    return JSONResponse(
        {"status": "ok" if ready else "degraded", "backend": ready, "version": APP_VERSION},
        status_code=200 if ready else 503,
    )


def _load_record(backend: BackendClient, event_id: str) -> EventRecord:
    try:
        with backend.session() as db:
            return EventRecord.from_model(get_event(db, event_id))
    except EventNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Event not found") from exc


def _event_types(request: Request, backend: BackendClient) -> list[str]:
    return available_types(
        backend.events.snapshot.events, get_settings(request).event_types
    )


def _render_form(
    request: Request,
    backend: BackendClient,
    *,
    form: EventFormData,
    record: EventRecord | None,
    user: User,
    outcome: FormOutcome | None = None,
):
    context = {
        "request": request,
        "form": form,
        "record": record,
        "user": user,
        "event_types": _event_types(request, backend),
        "error": outcome.error if outcome else None,
        "notification": error_notification(outcome.error) if outcome and outcome.error else None,
    }
    return templates.TemplateResponse(
        request,
        "event_form.html",
        context,
        status_code=outcome.status_code if outcome else 200,
    )


def _form_data(
    *,
    title: str,
    type: str,
    custom_type: str,
    use_custom_type: bool,
    description: str,
    location: str,
    url: str,
    date: str,
    timezone_offset_minutes: str,
) -> EventFormData:
    try:
        offset = int(timezone_offset_minutes or 0)
    except ValueError:
        offset = 0
    return EventFormData(
        title=title,
        type=type,
        custom_type=custom_type,
        use_custom_type=use_custom_type,
        description=description,
        location=location,
        url=url,
        date=date,
        timezone_offset_minutes=offset,
    )


@app.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    tab: str = Query("all"),
    notice: str | None = Query(None),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    view = tab if tab in VIEWS else "all"
    snapshot = backend.events.refresh()
    counts = {
        name: len(select_view(name, snapshot.events, user_id=user.id))
        for name in VIEWS
    }
    response = templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "request": request,
            "user": user,
            "tab": view,
            "events": select_view(view, snapshot.events, user_id=user.id),
            "counts": counts,
            "snapshot_version": snapshot.version,
            "sync_error": backend.events.last_error,
            "notification": notice_for(notice),
        },
    )
    return no_cache(response)


@app.get("/events/new", response_class=HTMLResponse)
def new_event_page(
    request: Request,
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    return _render_form(
        request, backend, form=EventFormData(), record=None, user=user
    )


@app.post("/events", response_class=HTMLResponse)
def create_event_submit(
    request: Request,
    title: str = Form(""),
    type: str = Form(""),
    custom_type: str = Form(""),
    use_custom_type: bool = Form(False),
    description: str = Form(""),
    location: str = Form(""),
    url: str = Form(""),
    date: str = Form(""),
    timezone_offset_minutes: str = Form("0"),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    form = _form_data(
        title=title,
        type=type,
        custom_type=custom_type,
        use_custom_type=use_custom_type,
        description=description,
        location=location,
        url=url,
        date=date,
        timezone_offset_minutes=timezone_offset_minutes,
    )
    outcome = submit_event_form(backend, form, user=user)
    if outcome.ok:
        return RedirectResponse(f"/dashboard?notice={outcome.notice}", status_code=303)
    return _render_form(
        request, backend, form=form, record=None, user=user, outcome=outcome
    )


@app.get("/events/{event_id}/edit", response_class=HTMLResponse)
def edit_event_page(
    event_id: str,
    request: Request,
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    record = _load_record(backend, event_id)
    if record.user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only edit events you created.")
    return _render_form(
        request,
        backend,
        form=EventFormData.from_record(record),
        record=record,
        user=user,
    )


@app.post("/events/{event_id}", response_class=HTMLResponse)
def update_event_submit(
    event_id: str,
    request: Request,
    title: str = Form(""),
    type: str = Form(""),
    custom_type: str = Form(""),
    use_custom_type: bool = Form(False),
    description: str = Form(""),
    location: str = Form(""),
    url: str = Form(""),
    date: str = Form(""),
    timezone_offset_minutes: str = Form("0"),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    record = _load_record(backend, event_id)
    form = _form_data(
        title=title,
        type=type,
        custom_type=custom_type,
        use_custom_type=use_custom_type,
        description=description,
        location=location,
        url=url,
        date=date,
        timezone_offset_minutes=timezone_offset_minutes,
    )
    outcome = submit_event_form(backend, form, user=user, event_id=event_id)
    if outcome.ok:
        return RedirectResponse(f"/dashboard?notice={outcome.notice}", status_code=303)
    return _render_form(
        request, backend, form=form, record=record, user=user, outcome=outcome
    )


@app.get("/events/{event_id}/delete", response_class=HTMLResponse)
def delete_event_confirm(
    event_id: str,
    request: Request,
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    record = _load_record(backend, event_id)
    if record.user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only delete events you created.")
    return templates.TemplateResponse(
        request,
        "event_confirm_delete.html",
        {"request": request, "record": record, "user": user},
    )


@app.post("/events/{event_id}/delete", response_class=HTMLResponse)
def delete_event_submit(
    event_id: str,
    request: Request,
    confirm: str = Form(""),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    record = _load_record(backend, event_id)
    if confirm != "yes":
        return templates.TemplateResponse(
            request,
            "event_confirm_delete.html",
            {"request": request, "record": record, "user": user},
        )
    outcome = submit_event_delete(backend, event_id, user=user)
    if outcome.ok:
        return RedirectResponse(f"/dashboard?notice={outcome.notice}", status_code=303)
    return _render_form(
        request,
        backend,
        form=EventFormData.from_record(record),
        record=record,
        user=user,
        outcome=outcome,
    )


# -------- JSON API (v1) --------


@app.get("/api/v1/events")
def api_list_events(
    view: str = Query("all"),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    if view not in VIEWS:
        raise HTTPException(status_code=400, detail=f"view must be one of {', '.join(VIEWS)}")
    snapshot = backend.events.refresh()
    return {
        "version": snapshot.version,
        "view": view,
        "events": [
            record.to_dict()
            for record in select_view(view, snapshot.events, user_id=user.id)
        ],
        "error": backend.events.last_error,
    }


def _sse(snapshot: Snapshot) -> str:
    payload = json.dumps(
        {"version": snapshot.version, "count": len(snapshot.events)},
        separators=(",", ":"),
    )
    return f"event: snapshot\nid: {snapshot.version}\ndata: {payload}\n\n"


@app.get("/api/v1/events/stream")
async def api_event_stream(
    request: Request,
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    """Server-sent events announcing each new snapshot to a signed-in user."""
    token = session_token(request)
    subscription = backend.events.subscribe(user.id)

    async def stream():
        try:
            snapshot = await run_in_threadpool(backend.events.refresh)
            yield _sse(snapshot)
            while not await request.is_disconnected():
                try:
                    snapshot = await subscription.next(timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if snapshot is None:
                    break
                try:
                    still_signed_in = await run_in_threadpool(
                        backend.identity.current_user, token
                    )
                except SQLAlchemyError:
                    logger.exception("Session check failed during event stream")
                    break
                if still_signed_in is None:
                    break
                yield _sse(snapshot)
        finally:
            backend.events.unsubscribe(subscription)

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-store", "X-Accel-Buffering": "no"},
    )
