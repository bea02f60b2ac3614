"""Live event snapshots and the derived list views."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .crud import list_events
from .database import session_scope
from .models import Event
from .utils import isoformat_utc, parse_instant, utcnow

logger = logging.getLogger("uvicorn.error")

SNAPSHOT_ERROR = "We could not load the latest events. Showing the last known list."


def normalize_date(value: Any) -> str | None:
    """Return an ISO-8601 UTC string for ``value`` or ``None`` when unknown.

    Native datetimes are converted, parseable strings pass through unchanged,
    and anything else (missing or corrupt) yields the unknown state.
    """
    if isinstance(value, datetime):
        return isoformat_utc(value)
    if isinstance(value, str) and parse_instant(value) is not None:
        return value
    return None


def _optional_iso(value: datetime | None) -> str | None:
    return isoformat_utc(value) if value else None


@dataclass(frozen=True)
class EventRecord:
    id: str
    title: str
    type: str
    description: str | None
    location: str
    date: str | None
    name: str
    user_id: str
    url: str | None
    created_at: str | None
    updated_at: str | None

    @property
    def date_known(self) -> bool:
        return self.date is not None

    @property
    def instant(self) -> datetime | None:
        return parse_instant(self.date)

    @classmethod
    def from_model(cls, event: Event) -> "EventRecord":
        return cls(
            id=event.id,
            title=event.title or "",
            type=event.type or "",
            description=event.description,
            location=event.location or "",
            date=normalize_date(event.date),
            name=event.name or "",
            user_id=event.user_id,
            url=event.url,
            created_at=_optional_iso(event.created_at),
            updated_at=_optional_iso(event.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Snapshot:
    version: int
    events: tuple[EventRecord, ...]
    taken_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "taken_at": _optional_iso(self.taken_at),
            "events": [record.to_dict() for record in self.events],
        }


def own_events(events: Iterable[EventRecord], user_id: str | None) -> list[EventRecord]:
    return [event for event in events if event.user_id == user_id]


def upcoming_events(
    events: Iterable[EventRecord], *, now: datetime | None = None
) -> list[EventRecord]:
    """Events whose date parses and is at or after ``now``."""
    now = now or utcnow()
    upcoming = []
    for event in events:
        instant = event.instant
        if instant is not None and instant >= now:
            upcoming.append(event)
    return upcoming


def available_types(
    events: Iterable[EventRecord], suggested: Sequence[str]
) -> list[str]:
    """Suggested types followed by custom types already in use."""
    types = list(suggested)
    for event in events:
        if event.type and event.type not in types:
            types.append(event.type)
    return types


VIEWS = ("all", "mine", "upcoming")


def select_view(
    view: str, events: Sequence[EventRecord], *, user_id: str, now: datetime | None = None
) -> list[EventRecord]:
    if view == "mine":
        return own_events(events, user_id)
    if view == "upcoming":
        return upcoming_events(events, now=now)
    return list(events)


_CLOSED = object()


class Subscription:
    """A consumer of snapshots bound to the event loop that created it."""

    def __init__(self, user_id: str, loop: asyncio.AbstractEventLoop) -> None:
        self.user_id = user_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _put(self, item: object) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, item)

    async def next(self, timeout: float | None = None) -> Snapshot | None:
        """Wait for the next snapshot; ``None`` once the subscription closed.

        Raises ``asyncio.TimeoutError`` when ``timeout`` elapses first.
        """
        if self.closed and self.queue.empty():
            return None
        item = await asyncio.wait_for(self.queue.get(), timeout)
        if item is _CLOSED:
            self.closed = True
            return None
        return item


class EventChannel:
    """Ordered event snapshot shared by every dashboard consumer.

    Each refresh rebuilds the whole list from the query result and swaps it in
    as one immutable tuple, so readers never see a partial update. Failed
    refreshes keep the previous snapshot.
    """

    def __init__(self, factory: sessionmaker) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._snapshot = Snapshot(version=0, events=(), taken_at=None)
        self._subscribers: set[Subscription] = set()
        self.last_error: str | None = None

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def refresh(self) -> Snapshot:
        try:
            with session_scope(self._factory) as db:
                records = tuple(EventRecord.from_model(e) for e in list_events(db))
        except SQLAlchemyError:
            logger.exception("Event snapshot query failed")
            self.last_error = SNAPSHOT_ERROR
            return self._snapshot
        with self._lock:
            self._snapshot = Snapshot(
                version=self._snapshot.version + 1,
                events=records,
                taken_at=utcnow(),
            )
            self.last_error = None
            return self._snapshot

    def publish(self) -> Snapshot:
        """Refresh and deliver the snapshot to every live subscriber."""
        previous = self._snapshot
        snapshot = self.refresh()
        if snapshot is previous:
            return snapshot
        for subscription in self._live_subscribers():
            self._deliver(subscription, snapshot)
        return snapshot

    def subscribe(self, user_id: str) -> Subscription:
        """Register a subscriber on the running event loop."""
        subscription = Subscription(user_id, asyncio.get_running_loop())
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)
        subscription.closed = True

    def close_user(self, user_id: str) -> int:
        """End every subscription held by ``user_id``."""
        closed = 0
        for subscription in self._live_subscribers():
            if subscription.user_id == user_id:
                self._deliver(subscription, _CLOSED)
                with self._lock:
                    self._subscribers.discard(subscription)
                closed += 1
        return closed

    def close(self) -> None:
        for subscription in self._live_subscribers():
            self._deliver(subscription, _CLOSED)
        with self._lock:
            self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _live_subscribers(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscribers)

    def _deliver(self, subscription: Subscription, item: object) -> None:
        try:
            subscription._put(item)
        except RuntimeError:
            # Loop already closed; the consumer is gone.
            with self._lock:
                self._subscribers.discard(subscription)
