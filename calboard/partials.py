"""HTML fragments refreshed by the dashboard's live event stream."""

from __future__ import annotations

from fastapi import Depends, Query, Request
from fastapi.responses import HTMLResponse

from .backend import BackendClient
from .dependencies import get_backend, no_cache, require_user, templates
from .models import User
from .sync import VIEWS, select_view


def events_list(
    request: Request,
    tab: str = Query("all"),
    backend: BackendClient = Depends(get_backend),
    user: User = Depends(require_user),
):
    """Render the event list for one dashboard tab from the current snapshot."""
    view = tab if tab in VIEWS else "all"
    snapshot = backend.events.snapshot
    if snapshot.taken_at is None:
        snapshot = backend.events.refresh()
    return no_cache(
        templates.TemplateResponse(
            request,
            "partials/event_list.html",
            {
                "request": request,
                "events": select_view(view, snapshot.events, user_id=user.id),
                "user": user,
                "tab": view,
                "snapshot_version": snapshot.version,
            },
        )
    )


def register_partial_routes(app):
    """Register all partial routes on the FastAPI app."""
    app.get("/partials/events", response_class=HTMLResponse)(events_list)
