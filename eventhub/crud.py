"""CRUD helpers for users and events."""

from __future__ import annotations

import re
import secrets
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import EventNotFoundError, EventValidationError
from .models import (
    DEFAULT_CATEGORY,
    DEFAULT_STATUS,
    EVENT_CATEGORIES,
    Event,
    EventAttendee,
    User,
)
from .utils import parse_datetime, utcnow

# (min, max) lengths after trimming, keyed by field name.
TEXT_FIELD_LIMITS: dict[str, tuple[int, int]] = {
    "title": (3, 100),
    "description": (10, 1000),
    "location": (3, 200),
}
EDITABLE_EVENT_FIELDS = ("title", "description", "location", "date_time", "category")
USER_NAME_LIMITS = (2, 50)

_email_pattern = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def _now() -> datetime:
    return utcnow()


def _clean_text(field: str, value: Any) -> str:
    minimum, maximum = TEXT_FIELD_LIMITS[field]
    label = field.capitalize()
    if not isinstance(value, str):
        raise EventValidationError(f"{label} is required", field=field)
    cleaned = value.strip()
    if not minimum <= len(cleaned) <= maximum:
        raise EventValidationError(
            f"{label} must be between {minimum} and {maximum} characters",
            field=field,
        )
    return cleaned


def _clean_date_time(value: Any, *, now: datetime) -> datetime:
    if value is None or value == "":
        raise EventValidationError("Date and time is required", field="date_time")
    try:
        parsed = parse_datetime(value)
    except (TypeError, ValueError) as exc:
        raise EventValidationError(
            "Please enter a valid date and time", field="date_time"
        ) from exc
    if parsed <= now:
        raise EventValidationError(
            "Event date must be in the future", field="date_time"
        )
    return parsed


def _clean_category(value: Any) -> str:
    normalized = value.strip().lower() if isinstance(value, str) else None
    if normalized not in EVENT_CATEGORIES:
        raise EventValidationError(
            "Invalid category. Must be one of: " + ", ".join(EVENT_CATEGORIES),
            field="category",
        )
    return normalized


def _clean_max_attendees(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise EventValidationError(
            "Maximum attendees must be at least 1", field="max_attendees"
        )
    return value


def validate_event_fields(
    fields: Mapping[str, Any], *, partial: bool = False, now: datetime | None = None
) -> dict[str, Any]:
    """Return trimmed, validated values for the editable event fields.

    With ``partial`` only the keys present in ``fields`` are checked; otherwise
    every required field must be supplied and a missing category falls back to
    the default. Keys outside the editable set are ignored.
    """
    now = now or _now()
    cleaned: dict[str, Any] = {}
    for field in TEXT_FIELD_LIMITS:
        if field in fields or not partial:
            cleaned[field] = _clean_text(field, fields.get(field))
    if "date_time" in fields or not partial:
        cleaned["date_time"] = _clean_date_time(fields.get("date_time"), now=now)
    if fields.get("category") is not None:
        cleaned["category"] = _clean_category(fields["category"])
    elif "category" in fields and partial:
        raise EventValidationError("Category cannot be empty", field="category")
    elif not partial:
        cleaned["category"] = DEFAULT_CATEGORY
    return cleaned


def create_user(session: Session, *, name: str, email: str) -> User:
    """Register a user and issue their bearer token."""
    minimum, maximum = USER_NAME_LIMITS
    cleaned_name = (name or "").strip()
    if not minimum <= len(cleaned_name) <= maximum:
        raise EventValidationError(
            f"Name must be between {minimum} and {maximum} characters", field="name"
        )
    normalized_email = (email or "").strip().lower()
    if not _email_pattern.match(normalized_email):
        raise EventValidationError("Please enter a valid email", field="email")
    if get_user_by_email(session, normalized_email):
        raise EventValidationError("Email is already registered", field="email")
    user = User(
        name=cleaned_name,
        email=normalized_email,
        api_token=secrets.token_urlsafe(32),
        created_at=_now(),
    )
    session.add(user)
    session.flush()
    return user


def get_user_by_email(session: Session, email: str) -> User | None:
    normalized = (email or "").strip().lower()
    if not normalized:
        return None
    return session.scalars(select(User).where(User.email == normalized)).first()


def get_user_by_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    return session.scalars(select(User).where(User.api_token == token)).first()


def rotate_user_token(session: Session, user: User) -> str:
    user.api_token = secrets.token_urlsafe(32)
    session.add(user)
    session.flush()
    return user.api_token


def get_event(session: Session, event_id: str) -> Event:
    event = session.get(Event, event_id)
    if not event:
        raise EventNotFoundError()
    return event


def create_event(
    session: Session,
    *,
    creator: User,
    title: str,
    description: str,
    location: str,
    date_time: datetime | str,
    category: str | None = None,
    max_attendees: int | None = None,
    now: datetime | None = None,
) -> Event:
    """Validate and persist a new event owned by ``creator``."""
    now = now or _now()
    cleaned = validate_event_fields(
        {
            "title": title,
            "description": description,
            "location": location,
            "date_time": date_time,
            "category": category,
        },
        now=now,
    )
    event = Event(
        **cleaned,
        status=DEFAULT_STATUS,
        creator=creator,
        creator_name=creator.name,
        attendee_count=0,
        max_attendees=_clean_max_attendees(max_attendees),
        created_at=now,
        last_modified=now,
    )
    session.add(event)
    session.flush()
    return event


def list_created_events(session: Session, user: User) -> Sequence[Event]:
    stmt = (
        select(Event)
        .where(Event.creator_id == user.id)
        .order_by(Event.date_time.desc(), Event.id)
    )
    return session.scalars(stmt).all()


def list_joined_events(session: Session, user: User) -> Sequence[Event]:
    # Same rows the event side reads as its attendee list.
    stmt = (
        select(Event)
        .join(EventAttendee, EventAttendee.event_id == Event.id)
        .where(EventAttendee.user_id == user.id)
        .order_by(Event.date_time.desc(), Event.id)
    )
    return session.scalars(stmt).all()
