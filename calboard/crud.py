"""CRUD helpers for events and invitations."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .models import Event, Invitation
from .utils import to_naive_utc, utcnow


class EventNotFoundError(LookupError):
    """Raised when an event id does not match a stored record."""


class PermissionDeniedError(PermissionError):
    """Raised when a user changes an event they do not own."""


class InvitationUnavailableError(Exception):
    """Raised when an invitation is missing or already redeemed."""


def _now() -> datetime:
    return utcnow()


def list_events(session: Session) -> Sequence[Event]:
    """Return every event ordered by date, newest first."""
    stmt = select(Event).order_by(Event.date.desc().nulls_last(), Event.id)
    return session.scalars(stmt).all()


def get_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    return event


def _require_owner(event: Event, actor_id: str) -> None:
    if not actor_id or event.user_id != actor_id:
        raise PermissionDeniedError(
            f"User {actor_id!r} does not own event {event.id!r}"
        )


def create_event(
    session: Session,
    *,
    title: str,
    type: str,
    description: str | None,
    location: str,
    url: str | None,
    date: datetime,
    name: str,
    user_id: str,
    updated_at: datetime | None = None,
    created_at: datetime | None = None,
) -> Event:
    """Insert a new event owned by ``user_id``."""
    now = _now()
    event = Event(
        title=title,
        type=type,
        description=description,
        location=location,
        url=url,
        date=to_naive_utc(date),
        name=name,
        user_id=user_id,
        created_at=to_naive_utc(created_at) or now,
        updated_at=to_naive_utc(updated_at) or now,
    )
    session.add(event)
    session.flush()
    return event


def update_event(
    session: Session,
    event_id: str,
    *,
    actor_id: str,
    title: str,
    type: str,
    description: str | None,
    location: str,
    url: str | None,
    date: datetime,
    name: str,
    updated_at: datetime | None = None,
) -> Event:
    """Replace the editable fields of an event owned by ``actor_id``.

    The owner id and creation time are never touched.
    """
    event = get_event(session, event_id)
    _require_owner(event, actor_id)
    event.title = title
    event.type = type
    event.description = description
    event.location = location
    event.url = url
    event.date = to_naive_utc(date)
    event.name = name
    event.updated_at = to_naive_utc(updated_at) or _now()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event_id: str, *, actor_id: str) -> None:
    event = get_event(session, event_id)
    _require_owner(event, actor_id)
    session.delete(event)
    session.flush()


def get_invitation(session: Session, invitation_id: str | None) -> Invitation | None:
    normalized = (invitation_id or "").strip()
    if not normalized:
        return None
    return session.get(Invitation, normalized)


def list_invitations(session: Session, *, unused_only: bool = False) -> Sequence[Invitation]:
    stmt = select(Invitation).order_by(Invitation.created_at.desc())
    if unused_only:
        stmt = stmt.where(Invitation.used.is_(False))
    return session.scalars(stmt).all()


def create_invitation(
    session: Session, *, invitation_id: str | None = None, note: str | None = None
) -> Invitation:
    invitation = Invitation(
        id=invitation_id or secrets.token_urlsafe(16),
        used=False,
        note=note,
        created_at=_now(),
    )
    session.add(invitation)
    session.flush()
    return invitation


def redeem_invitation(
    session: Session, invitation_id: str, *, user_id: str, used_at: datetime | None = None
) -> None:
    """Merge ``used``/``used_by``/``used_at`` into an unused invitation.

    Only those three fields are written. The update is conditional on the
    invitation still being unused, so a second redemption always fails.
    """
    invitation_id = (invitation_id or "").strip()
    stmt = (
        update(Invitation)
        .where(Invitation.id == invitation_id, Invitation.used.is_(False))
        .values(used=True, used_by=user_id, used_at=to_naive_utc(used_at) or _now())
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        raise InvitationUnavailableError(invitation_id)
