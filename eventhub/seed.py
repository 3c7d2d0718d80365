"""Development helpers for populating fake users, events and memberships."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import create_event, create_user, get_user_by_email
from .database import get_session
from .errors import AlreadyMemberError, CapacityExceededError
from .membership import join_event
from .models import EVENT_CATEGORIES, User
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Summit",
    "Hack Night",
    "Workshop",
    "Book Club",
    "Meetup",
    "Webinar",
    "Social",
    "Panel",
]


def seed_fake_data(
    *,
    user_count: int = 10,
    event_count: int = 25,
    max_joins_per_event: int = 5,
) -> dict[str, int]:
    """Populate the database with synthetic users, events and joins."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if max_joins_per_event < 0:
        raise ValueError("max_joins_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"users": 0, "events": 0, "joins": 0}

    with get_session() as session:
        users = [_create_user(session, fake) for _ in range(user_count)]
        stats["users"] = len(users)
        for _ in range(event_count):
            creator = random.choice(users)
            event = create_event(
                session,
                creator=creator,
                title=_event_title(fake),
                description=fake.paragraph(nb_sentences=3)[:1000],
                location=fake.address().replace("\n", ", ")[:200],
                date_time=_random_future_time(),
                category=random.choice(EVENT_CATEGORIES),
                max_attendees=random.choice([None, None, 3, 10, 25]),
            )
            stats["events"] += 1
            stats["joins"] += _join_random_users(
                session, event.id, users, max_joins_per_event
            )

    return stats


def _create_user(session: Session, fake: Faker) -> User:
    for _ in range(20):
        email = fake.unique.email()
        if get_user_by_email(session, email):
            continue
        return create_user(session, name=fake.name()[:50], email=email)
    raise RuntimeError("Failed to create a unique user email")


def _event_title(fake: Faker) -> str:
    return f"{fake.city()} {random.choice(_event_types)}"[:100]


def _random_future_time() -> datetime:
    day_offset = random.randint(1, 60)
    minute_offset = random.randint(0, 23 * 60)
    return utcnow() + timedelta(days=day_offset, minutes=minute_offset)


def _join_random_users(
    session: Session, event_id: str, users: list[User], max_joins: int
) -> int:
    if max_joins <= 0:
        return 0
    joined = 0
    for user in random.sample(users, k=min(random.randint(0, max_joins), len(users))):
        try:
            join_event(session, event_id, user)
        except (AlreadyMemberError, CapacityExceededError):
            continue
        joined += 1
    return joined
