from __future__ import annotations

from datetime import timedelta

import pytest

from eventhub.crud import (
    create_event,
    create_user,
    get_event,
    get_user_by_email,
    get_user_by_token,
    rotate_user_token,
    validate_event_fields,
)
from eventhub.errors import EventNotFoundError, EventValidationError
from eventhub.utils import utcnow


def _valid_fields(**overrides):
    fields = {
        "title": "Community Meetup",
        "description": "Monthly get-together for local developers",
        "location": "Room 101",
        "date_time": utcnow() + timedelta(days=3),
    }
    fields.update(overrides)
    return fields


def test_create_event_defaults_and_snapshots_creator(session, make_user):
    creator = make_user(name="Ada Lovelace")
    event = create_event(session, creator=creator, **_valid_fields(title="  Padded  "))
    session.commit()

    assert event.title == "Padded"
    assert event.category == "other"
    assert event.status == "upcoming"
    assert event.attendee_count == 0
    assert event.max_attendees is None
    assert event.creator_id == creator.id
    assert event.creator_name == "Ada Lovelace"
    assert event.attendees == []
    assert event.created_at == event.last_modified


def test_create_event_accepts_iso_string_with_zulu_suffix(session, make_user):
    creator = make_user()
    when = (utcnow() + timedelta(days=10)).replace(microsecond=0)
    event = create_event(
        session,
        creator=creator,
        **_valid_fields(date_time=when.isoformat() + "Z", category="Workshop"),
    )
    assert event.date_time == when
    assert event.category == "workshop"


@pytest.mark.parametrize(
    "overrides, field, message",
    [
        ({"title": "ab"}, "title", "Title must be between 3 and 100 characters"),
        ({"title": "x" * 101}, "title", "Title must be between 3 and 100 characters"),
        ({"description": "too short"}, "description", None),
        ({"location": "  a  "}, "location", None),
        ({"date_time": "tomorrow-ish"}, "date_time", "Please enter a valid date and time"),
        ({"category": "party"}, "category", None),
    ],
)
def test_create_event_rejects_invalid_fields(session, make_user, overrides, field, message):
    creator = make_user()
    with pytest.raises(EventValidationError) as excinfo:
        create_event(session, creator=creator, **_valid_fields(**overrides))
    assert excinfo.value.field == field
    if message:
        assert excinfo.value.message == message


def test_create_event_rejects_past_date(session, make_user):
    creator = make_user()
    with pytest.raises(EventValidationError) as excinfo:
        create_event(
            session,
            creator=creator,
            **_valid_fields(date_time=utcnow() - timedelta(minutes=1)),
        )
    assert excinfo.value.message == "Event date must be in the future"


@pytest.mark.parametrize("max_attendees", [0, -5, True])
def test_create_event_rejects_bad_capacity(session, make_user, max_attendees):
    creator = make_user()
    with pytest.raises(EventValidationError):
        create_event(
            session, creator=creator, max_attendees=max_attendees, **_valid_fields()
        )


def test_partial_validation_only_checks_supplied_fields():
    assert validate_event_fields({"title": " New title "}, partial=True) == {
        "title": "New title"
    }
    with pytest.raises(EventValidationError):
        validate_event_fields({"category": None}, partial=True)


def test_get_event_raises_not_found(session):
    with pytest.raises(EventNotFoundError):
        get_event(session, "missing")


def test_user_registration_and_tokens(session):
    user = create_user(session, name="  Grace Hopper ", email="Grace@Example.com ")
    session.commit()

    assert user.name == "Grace Hopper"
    assert user.email == "grace@example.com"
    assert get_user_by_email(session, "GRACE@example.com").id == user.id
    assert get_user_by_token(session, user.api_token).id == user.id
    assert get_user_by_token(session, None) is None

    old_token = user.api_token
    new_token = rotate_user_token(session, user)
    session.commit()
    assert new_token != old_token
    assert get_user_by_token(session, old_token) is None


@pytest.mark.parametrize(
    "name, email, field",
    [("A", "a@example.com", "name"), ("Alan", "not-an-email", "email")],
)
def test_user_registration_validates(session, name, email, field):
    with pytest.raises(EventValidationError) as excinfo:
        create_user(session, name=name, email=email)
    assert excinfo.value.field == field


def test_duplicate_email_is_rejected(session, make_user):
    make_user(email="dup@example.com")
    with pytest.raises(EventValidationError):
        create_user(session, name="Someone Else", email="DUP@example.com")
