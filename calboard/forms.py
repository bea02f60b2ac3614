"""Event form validation and submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, HttpUrl, TypeAdapter, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .backend import BackendClient
from .crud import (
    EventNotFoundError,
    PermissionDeniedError,
    create_event,
    delete_event,
    update_event,
)
from .models import User
from .sync import EventRecord
from .utils import local_to_utc, utcnow

logger = logging.getLogger("uvicorn.error")

INVALID_DATE = "Select a valid date."
INVALID_URL = "Enter a valid URL, for example https://www.example.com"
TITLE_REQUIRED = "Title is required."
LOCATION_REQUIRED = "Location is required."
TYPE_REQUIRED = "Choose a type or enter a new one."
SAVE_DENIED = (
    "You do not have permission to change this event. "
    "Check that you are signed in as its owner."
)
SAVE_FAILED = "Something went wrong while saving the event."
DELETE_DENIED = (
    "You do not have permission to delete this event. "
    "Check that you are signed in as its owner."
)
DELETE_FAILED = "Something went wrong while deleting the event."

_url_adapter = TypeAdapter(HttpUrl)


class FormValidationError(ValueError):
    """Raised before any write when the submitted form is invalid."""


class EventFormData(BaseModel):
    title: str = ""
    type: str = ""
    custom_type: str = ""
    use_custom_type: bool = False
    description: str = ""
    location: str = ""
    url: str = ""
    date: str = ""
    timezone_offset_minutes: int = 0

    @classmethod
    def from_record(cls, record: EventRecord) -> "EventFormData":
        """Pre-populate the edit form; an unknown date leaves the field empty."""
        instant = record.instant
        return cls(
            title=record.title,
            type=record.type,
            description=record.description or "",
            location=record.location,
            url=record.url or "",
            date=instant.strftime("%Y-%m-%dT%H:%M") if instant else "",
        )

    @property
    def resolved_type(self) -> str:
        chosen = self.custom_type if self.use_custom_type else self.type
        return chosen.strip()


@dataclass(frozen=True)
class ValidatedEvent:
    title: str
    type: str
    description: str
    location: str
    url: str | None
    date: datetime


def is_valid_url(raw: str) -> bool:
    try:
        _url_adapter.validate_python(raw)
    except ValidationError:
        return False
    return True


def parse_form_date(raw: str | None, offset_minutes: int | str | None = 0) -> datetime:
    text = (raw or "").strip()
    if not text:
        raise FormValidationError(INVALID_DATE)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise FormValidationError(INVALID_DATE) from exc
    return local_to_utc(parsed, offset_minutes)


def validate_event_form(data: EventFormData) -> ValidatedEvent:
    """Check the date, then the URL, then the required text fields."""
    date = parse_form_date(data.date, data.timezone_offset_minutes)
    url = data.url.strip()
    if url and not is_valid_url(url):
        raise FormValidationError(INVALID_URL)
    title = data.title.strip()
    if not title:
        raise FormValidationError(TITLE_REQUIRED)
    location = data.location.strip()
    if not location:
        raise FormValidationError(LOCATION_REQUIRED)
    event_type = data.resolved_type
    if not event_type:
        raise FormValidationError(TYPE_REQUIRED)
    return ValidatedEvent(
        title=title,
        type=event_type,
        description=data.description.strip(),
        location=location,
        url=url or None,
        date=date,
    )


def build_payload(
    validated: ValidatedEvent,
    user: User,
    *,
    creating: bool,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Assemble the write payload; ``created_at`` is only set on create."""
    now = now or utcnow()
    payload: dict[str, Any] = {
        "title": validated.title,
        "type": validated.type,
        "description": validated.description,
        "location": validated.location,
        "url": validated.url,
        "date": validated.date,
        "name": user.display_name or "user",
        "user_id": user.id,
        "updated_at": now,
    }
    if creating:
        payload["created_at"] = now
    return payload


@dataclass(frozen=True)
class FormOutcome:
    ok: bool
    notice: str | None = None
    error: str | None = None
    status_code: int = 200
    event_id: str | None = None


def submit_event_form(
    backend: BackendClient,
    data: EventFormData,
    *,
    user: User,
    event_id: str | None = None,
) -> FormOutcome:
    """Validate and persist one event: insert without ``event_id``, else update."""
    try:
        validated = validate_event_form(data)
    except FormValidationError as exc:
        logger.debug("Event form rejected: %s", exc)
        return FormOutcome(ok=False, error=str(exc), status_code=400)

    creating = event_id is None
    payload = build_payload(validated, user, creating=creating)
    try:
        with backend.session() as db:
            if creating:
                event = create_event(db, **payload)
            else:
                payload.pop("user_id")
                event = update_event(db, event_id, actor_id=user.id, **payload)
            saved_id = event.id
    except PermissionDeniedError:
        logger.warning("User %s may not edit event %s", user.id, event_id)
        return FormOutcome(ok=False, error=SAVE_DENIED, status_code=403)
    except (EventNotFoundError, SQLAlchemyError):
        logger.exception("Saving event %s failed", event_id or "(new)")
        return FormOutcome(ok=False, error=SAVE_FAILED, status_code=500)

    logger.info("%s event %s", "Created" if creating else "Updated", saved_id)
    backend.events.publish()
    return FormOutcome(
        ok=True, notice="created" if creating else "updated", event_id=saved_id
    )


def submit_event_delete(
    backend: BackendClient, event_id: str, *, user: User
) -> FormOutcome:
    """Remove one event; callers must have collected an explicit confirmation."""
    try:
        with backend.session() as db:
            delete_event(db, event_id, actor_id=user.id)
    except PermissionDeniedError:
        logger.warning("User %s may not delete event %s", user.id, event_id)
        return FormOutcome(ok=False, error=DELETE_DENIED, status_code=403)
    except (EventNotFoundError, SQLAlchemyError):
        logger.exception("Deleting event %s failed", event_id)
        return FormOutcome(ok=False, error=DELETE_FAILED, status_code=500)

    logger.info("Deleted event %s", event_id)
    backend.events.publish()
    return FormOutcome(ok=True, notice="deleted", event_id=event_id)
