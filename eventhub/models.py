"""SQLAlchemy models for EventHub."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

EVENT_CATEGORIES = ("conference", "workshop", "meetup", "webinar", "social", "other")
EVENT_STATUSES = ("upcoming", "ongoing", "completed", "cancelled")
DEFAULT_CATEGORY = "other"
DEFAULT_STATUS = "upcoming"


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    api_token = Column(String(128), nullable=False, unique=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    created_events = relationship(
        "Event",
        back_populates="creator",
        order_by="desc(Event.date_time), Event.id",
    )
    attendance_links = relationship(
        "EventAttendee",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    # Read view over the same rows as Event.attendees.
    joined_events = relationship(
        "Event",
        secondary="event_attendees",
        order_by="desc(Event.date_time), Event.id",
        viewonly=True,
    )


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("attendee_count >= 0", name="ck_events_attendee_count"),
        CheckConstraint(
            "max_attendees IS NULL OR max_attendees >= 1",
            name="ck_events_max_attendees",
        ),
        Index("ix_events_date_time", "date_time"),
        Index("ix_events_creator_id", "creator_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String(200), nullable=False)
    date_time = Column(DateTime, nullable=False)
    category = Column(String(16), nullable=False, default=DEFAULT_CATEGORY)
    status = Column(String(16), nullable=False, default=DEFAULT_STATUS)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    creator_name = Column(String(50), nullable=False)
    attendee_count = Column(Integer, nullable=False, default=0)
    max_attendees = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    last_modified = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    creator = relationship("User", back_populates="created_events")
    attendee_links = relationship(
        "EventAttendee",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EventAttendee.id",
    )
    attendees = relationship(
        "User",
        secondary="event_attendees",
        order_by="EventAttendee.id",
        viewonly=True,
    )

    @property
    def attendee_ids(self) -> list[str]:
        return [link.user_id for link in self.attendee_links]

    @property
    def is_full(self) -> bool:
        return self.max_attendees is not None and self.attendee_count >= self.max_attendees


class EventAttendee(Base):
    __tablename__ = "event_attendees"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendees_event_user"),
        Index("ix_event_attendees_user_id", "user_id"),
    )

    # Autoincrement id doubles as the join order of an event's attendees.
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    joined_at = Column(DateTime, default=_now, nullable=False)

    event = relationship("Event", back_populates="attendee_links")
    user = relationship("User", back_populates="attendance_links")
