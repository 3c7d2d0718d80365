"""Search, date-window and pagination planning for event listings.

Filters are built by pure functions into frozen values and only turned into
SQL when a listing runs. Every date computation is UTC: "today" is the start
of the current UTC calendar day and weeks start on Sunday.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .errors import EventValidationError
from .models import Event
from .utils import parse_datetime, utcnow

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
# Largest OFFSET/LIMIT a SQL integer can hold.
MAX_SQL_INT = 2**63 - 1


class DateWindowKind(str, Enum):
    TODAY = "today"
    CURRENT_WEEK = "current_week"
    LAST_WEEK = "last_week"
    CURRENT_MONTH = "current_month"
    LAST_MONTH = "last_month"
    EXPLICIT = "explicit"
    NONE = "none"


NAMED_BUCKETS = frozenset(
    {
        DateWindowKind.TODAY,
        DateWindowKind.CURRENT_WEEK,
        DateWindowKind.LAST_WEEK,
        DateWindowKind.CURRENT_MONTH,
        DateWindowKind.LAST_MONTH,
    }
)


@dataclass(frozen=True)
class Interval:
    """A ``[start, end)`` range, or ``[start, end]`` when ``end_inclusive``."""

    start: datetime
    end: datetime
    end_inclusive: bool = False

    def contains(self, value: datetime) -> bool:
        if value < self.start:
            return False
        return value <= self.end if self.end_inclusive else value < self.end


@dataclass(frozen=True)
class DateWindow:
    kind: DateWindowKind = DateWindowKind.NONE
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def explicit(cls, start: datetime, end: datetime) -> "DateWindow":
        return cls(DateWindowKind.EXPLICIT, start, end)

    @classmethod
    def from_name(cls, name: str | None) -> "DateWindow":
        """Map an exact bucket name to a window; anything else means no window."""
        try:
            kind = DateWindowKind(name or "")
        except ValueError:
            return cls()
        if kind not in NAMED_BUCKETS:
            return cls()
        return cls(kind)

    def resolve(self, now: datetime) -> Interval | None:
        return resolve_date_window(self, now)


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(value: datetime) -> datetime:
    # weekday() is Monday=0; the week here starts on Sunday.
    today = start_of_day(value)
    return today - timedelta(days=(today.weekday() + 1) % 7)


def first_of_month(value: datetime) -> datetime:
    return start_of_day(value).replace(day=1)


def first_of_next_month(value: datetime) -> datetime:
    return (first_of_month(value) + timedelta(days=32)).replace(day=1)


def first_of_previous_month(value: datetime) -> datetime:
    return (first_of_month(value) - timedelta(days=1)).replace(day=1)


def resolve_date_window(window: DateWindow, now: datetime) -> Interval | None:
    """Resolve ``window`` against ``now`` (naive UTC) into a concrete interval."""
    kind = window.kind
    today = start_of_day(now)
    if kind is DateWindowKind.TODAY:
        return Interval(today, today + timedelta(days=1))
    if kind is DateWindowKind.CURRENT_WEEK:
        week_start = start_of_week(today)
        return Interval(week_start, week_start + timedelta(days=7))
    if kind is DateWindowKind.LAST_WEEK:
        week_start = start_of_week(today)
        return Interval(week_start - timedelta(days=7), week_start)
    if kind is DateWindowKind.CURRENT_MONTH:
        return Interval(first_of_month(today), first_of_next_month(today))
    if kind is DateWindowKind.LAST_MONTH:
        return Interval(first_of_previous_month(today), first_of_month(today))
    if kind is DateWindowKind.EXPLICIT and window.start and window.end:
        return Interval(window.start, window.end, end_inclusive=True)
    return None


@dataclass(frozen=True)
class EventFilter:
    search: str | None = None
    window: DateWindow = field(default_factory=DateWindow)

    def clauses(self, now: datetime) -> list:
        conditions = []
        if self.search:
            conditions.append(
                or_(
                    Event.title.icontains(self.search, autoescape=True),
                    Event.description.icontains(self.search, autoescape=True),
                )
            )
        interval = self.window.resolve(now)
        if interval is not None:
            conditions.append(Event.date_time >= interval.start)
            if interval.end_inclusive:
                conditions.append(Event.date_time <= interval.end)
            else:
                conditions.append(Event.date_time < interval.end)
        return conditions

    def matches(self, event: Event, now: datetime) -> bool:
        """In-memory twin of :meth:`clauses`."""
        if self.search:
            needle = self.search.lower()
            haystacks = ((event.title or "").lower(), (event.description or "").lower())
            if not any(needle in text for text in haystacks):
                return False
        interval = self.window.resolve(now)
        return interval is None or interval.contains(event.date_time)


def _parse_range_bound(name: str, raw: Any) -> datetime:
    try:
        return parse_datetime(raw)
    except (TypeError, ValueError) as exc:
        raise EventValidationError(
            f"Invalid {name}; use ISO8601 format", field=name
        ) from exc


def build_event_filter(
    *,
    search: str | None = None,
    date_filter: str | None = None,
    start_date: str | datetime | None = None,
    end_date: str | datetime | None = None,
) -> EventFilter:
    """Build the listing filter; an explicit range replaces a named bucket.

    A range applies only when both bounds are given. Bounds that cannot be
    parsed raise :class:`EventValidationError` instead of being dropped.
    """
    cleaned_search = (search or "").strip() or None
    window = DateWindow.from_name(date_filter) if date_filter else DateWindow()
    if start_date not in (None, "") and end_date not in (None, ""):
        window = DateWindow.explicit(
            _parse_range_bound("startDate", start_date),
            _parse_range_bound("endDate", end_date),
        )
    return EventFilter(search=cleaned_search, window=window)


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def coerce_page_request(
    page: Any = None,
    limit: Any = None,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int | None = None,
) -> PageRequest:
    """Read page/limit leniently; junk values fall back to the defaults.

    Oversized values are clamped so the resulting offset stays a valid SQL
    integer.
    """
    page_value = _positive_int(page, DEFAULT_PAGE)
    limit_value = _positive_int(limit, default_limit)
    if max_limit is not None:
        limit_value = min(limit_value, max_limit)
    limit_value = min(limit_value, MAX_SQL_INT)
    page_value = min(page_value, MAX_SQL_INT // limit_value + 1)
    return PageRequest(page=page_value, limit=limit_value)


def build_pagination(*, page_request: PageRequest, total: int) -> dict[str, int]:
    return {
        "current": page_request.page,
        "pages": math.ceil(total / page_request.limit) if total else 0,
        "total": total,
    }


def list_events(
    session: Session,
    *,
    event_filter: EventFilter | None = None,
    page_request: PageRequest | None = None,
    now: datetime | None = None,
) -> tuple[Sequence[Event], dict[str, int]]:
    """Return one page of matching events, newest ``date_time`` first."""
    event_filter = event_filter or EventFilter()
    page_request = page_request or PageRequest()
    conditions = event_filter.clauses(now or utcnow())

    count_stmt = select(func.count()).select_from(Event)
    for condition in conditions:
        count_stmt = count_stmt.where(condition)
    total = session.scalar(count_stmt) or 0
    if page_request.offset >= total:
        return [], build_pagination(page_request=page_request, total=total)

    stmt = select(Event).order_by(Event.date_time.desc(), Event.id.asc())
    for condition in conditions:
        stmt = stmt.where(condition)
    stmt = stmt.offset(page_request.offset).limit(page_request.limit)
    events = session.scalars(stmt).all()
    return events, build_pagination(page_request=page_request, total=total)
