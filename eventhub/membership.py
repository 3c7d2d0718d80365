"""Join/leave membership and creator-only mutations for a single event.

An event's attendee list and a user's joined events are two views of the
``event_attendees`` rows, so every membership change is one write inside the
caller's transaction. The capacity check is folded into a conditional UPDATE
on the event row: the database serializes writers on that row, so two joins
racing for the last slot cannot both pass it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import delete, exists, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .crud import EDITABLE_EVENT_FIELDS, get_event, validate_event_fields
from .errors import (
    AlreadyMemberError,
    CapacityExceededError,
    EventNotFoundError,
    ForbiddenError,
    NotMemberError,
)
from .models import Event, EventAttendee, User
from .utils import utcnow

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")


def is_member(session: Session, event_id: str, user_id: str) -> bool:
    stmt = select(
        exists().where(
            EventAttendee.event_id == event_id, EventAttendee.user_id == user_id
        )
    )
    return bool(session.scalar(stmt))


def _event_exists(session: Session, event_id: str) -> bool:
    return bool(session.scalar(select(exists().where(Event.id == event_id))))


def _recount_attendees(session: Session, event_id: str, now: datetime) -> None:
    live_count = (
        select(func.count())
        .select_from(EventAttendee)
        .where(EventAttendee.event_id == event_id)
        .scalar_subquery()
    )
    session.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(attendee_count=live_count, last_modified=now)
        .execution_options(synchronize_session=False)
    )


def _refresh_views(session: Session, event: Event, user: User) -> None:
    session.refresh(event)
    if user in session:
        session.expire(user, ["joined_events", "attendance_links"])


def _require_creator(event: Event, actor: User) -> None:
    if event.creator_id != actor.id:
        raise ForbiddenError()


def join_event(
    session: Session, event_id: str, user: User, *, now: datetime | None = None
) -> Event:
    """Add ``user`` to the event's attendees.

    Raises :class:`EventNotFoundError`, :class:`AlreadyMemberError` or
    :class:`CapacityExceededError`; a failed join leaves the event untouched.
    """
    now = now or utcnow()
    event = get_event(session, event_id)
    if is_member(session, event_id, user.id):
        raise AlreadyMemberError()

    claimed = session.execute(
        update(Event)
        .where(
            Event.id == event_id,
            or_(
                Event.max_attendees.is_(None),
                Event.attendee_count < Event.max_attendees,
            ),
        )
        .values(attendee_count=Event.attendee_count + 1, last_modified=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        if not _event_exists(session, event_id):
            raise EventNotFoundError()
        logger.info("Join rejected for user %s: event %s is full", user.id, event_id)
        raise CapacityExceededError()

    try:
        session.execute(
            insert(EventAttendee).values(
                event_id=event_id, user_id=user.id, joined_at=now
            )
        )
    except IntegrityError as exc:
        # A concurrent join by the same user won the unique row; undo our claim.
        session.rollback()
        raise AlreadyMemberError() from exc

    _recount_attendees(session, event_id, now)
    _refresh_views(session, event, user)
    logger.info(
        "User %s joined event %s (%d/%s attendees)",
        user.id,
        event_id,
        event.attendee_count,
        event.max_attendees if event.max_attendees is not None else "unbounded",
    )
    return event


def leave_event(
    session: Session, event_id: str, user: User, *, now: datetime | None = None
) -> Event:
    """Remove ``user`` from the event's attendees."""
    now = now or utcnow()
    event = get_event(session, event_id)
    removed = session.execute(
        delete(EventAttendee).where(
            EventAttendee.event_id == event_id, EventAttendee.user_id == user.id
        )
    )
    if removed.rowcount == 0:
        raise NotMemberError()

    _recount_attendees(session, event_id, now)
    _refresh_views(session, event, user)
    logger.info(
        "User %s left event %s (%d attendees remain)",
        user.id,
        event_id,
        event.attendee_count,
    )
    return event


def update_event(
    session: Session,
    event_id: str,
    actor: User,
    fields: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> Event:
    """Apply a partial update from the event's creator.

    Ownership is checked before any field so a non-creator is always refused.
    Only title, description, location, date_time and category can change;
    attendees and the creator snapshot are never touched here.
    """
    now = now or utcnow()
    event = get_event(session, event_id)
    _require_creator(event, actor)
    editable = {key: value for key, value in fields.items() if key in EDITABLE_EVENT_FIELDS}
    cleaned = validate_event_fields(editable, partial=True, now=now)
    for key, value in cleaned.items():
        setattr(event, key, value)
    event.last_modified = now
    session.add(event)
    session.flush()
    if cleaned:
        logger.info(
            "Event %s updated by %s (%s)", event.id, actor.id, ", ".join(sorted(cleaned))
        )
    return event


def delete_event(session: Session, event_id: str, actor: User) -> None:
    """Delete an event owned by ``actor`` together with its memberships.

    Removing the attendee rows drops the event from every attendee's joined
    list, and deleting the row drops it from the creator's created list.
    """
    event = get_event(session, event_id)
    _require_creator(event, actor)
    attendee_ids = session.scalars(
        select(EventAttendee.user_id).where(EventAttendee.event_id == event_id)
    ).all()
    session.execute(delete(EventAttendee).where(EventAttendee.event_id == event_id))
    session.expire(event, ["attendee_links", "attendees"])
    session.delete(event)
    session.flush()
    # Loaded created/joined collections elsewhere in the session are now stale.
    session.expire_all()
    logger.info(
        "Event %s deleted by %s; released %d attendee(s)",
        event_id,
        actor.id,
        len(attendee_ids),
    )


def reconcile_attendee_counts(session: Session, *, now: datetime | None = None) -> int:
    """Rewrite any ``attendee_count`` that disagrees with the attendee rows.

    Returns how many events were corrected.
    """
    now = now or utcnow()
    live_counts = (
        select(EventAttendee.event_id, func.count().label("live"))
        .group_by(EventAttendee.event_id)
        .subquery()
    )
    drifted = session.execute(
        select(Event.id, Event.attendee_count, func.coalesce(live_counts.c.live, 0))
        .outerjoin(live_counts, live_counts.c.event_id == Event.id)
        .where(Event.attendee_count != func.coalesce(live_counts.c.live, 0))
    ).all()
    for event_id, stored, live in drifted:
        logger.warning(
            "Attendee count drift on event %s: stored %d, actual %d",
            event_id,
            stored,
            live,
        )
        _recount_attendees(session, event_id, now)
    if drifted:
        session.expire_all()
    return len(drifted)
