"""Development helpers for populating fake accounts, events and invitations."""

from __future__ import annotations

import random
from datetime import timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .backend import BackendClient
from .crud import create_event, create_invitation
from .models import User
from .utils import utcnow

SEED_PASSWORD = "calboard-seed"

_event_titles = [
    "Linear Algebra",
    "Organic Chemistry",
    "Thesis Review",
    "Reading Group",
    "Lab Safety Briefing",
    "Midterm",
    "Project Kickoff",
    "Department Social",
]


def seed_fake_data(
    backend: BackendClient,
    *,
    user_count: int = 3,
    max_events_per_user: int = 4,
    invitation_count: int = 2,
    password: str = SEED_PASSWORD,
) -> dict[str, int]:
    """Populate the database with synthetic accounts, events and invitations.

    Every seeded account signs in with ``password``.
    """
    if user_count < 0:
        raise ValueError("user_count must be >= 0")
    if max_events_per_user < 1:
        raise ValueError("max_events_per_user must be >= 1")
    if invitation_count < 0:
        raise ValueError("invitation_count must be >= 0")

    fake = Faker()
    stats = {"users": 0, "events": 0, "invitations": 0}
    event_types = list(backend.settings.event_types) or ["Other"]

    with backend.session() as session:
        for _ in range(user_count):
            user = _create_user(session, backend, fake, password)
            stats["users"] += 1
            for _ in range(random.randint(1, max_events_per_user)):
                _create_event(session, fake, user=user, event_types=event_types)
                stats["events"] += 1

        for _ in range(invitation_count):
            create_invitation(session, note="seed-data")
            stats["invitations"] += 1

    backend.events.publish()
    return stats


def _create_user(
    session: Session, backend: BackendClient, fake: Faker, password: str
) -> User:
    user = backend.identity.create_user(
        session, email=fake.unique.email(), password=password
    )
    return backend.identity.update_profile(
        session, user, display_name=fake.name_nonbinary()
    )


def _create_event(
    session: Session, fake: Faker, *, user: User, event_types: list[str]
) -> None:
    now = utcnow()
    date = now + timedelta(
        days=random.randint(-14, 45), minutes=random.randint(0, 23 * 60)
    )
    create_event(
        session,
        title=random.choice(_event_titles),
        type=random.choice(event_types),
        description=fake.sentence() if random.random() < 0.7 else "",
        location=f"{fake.city()} Hall {random.randint(1, 40)}",
        url=fake.url() if random.random() < 0.4 else None,
        date=date,
        name=user.display_name or "user",
        user_id=user.id,
        created_at=now,
        updated_at=now,
    )
