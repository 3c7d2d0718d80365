from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from eventhub.errors import EventValidationError
from eventhub.models import Event
from eventhub.queries import (
    MAX_SQL_INT,
    DateWindow,
    DateWindowKind,
    EventFilter,
    Interval,
    PageRequest,
    build_event_filter,
    build_pagination,
    coerce_page_request,
    list_events,
    resolve_date_window,
    start_of_week,
)

# A Thursday.
NOW = datetime(2024, 3, 14, 15, 30)


def _add_event(
    session,
    creator,
    *,
    title: str,
    date_time: datetime,
    description: str = "An evening of talks and snacks",
) -> Event:
    event = Event(
        title=title,
        description=description,
        location="Main Hall",
        date_time=date_time,
        category="meetup",
        status="upcoming",
        creator=creator,
        creator_name=creator.name,
        attendee_count=0,
        created_at=NOW,
        last_modified=NOW,
    )
    session.add(event)
    session.flush()
    return event


def _window(name: str, now: datetime = NOW) -> Interval | None:
    return resolve_date_window(DateWindow.from_name(name), now)


def test_today_covers_the_current_utc_day():
    interval = _window("today")
    assert interval == Interval(datetime(2024, 3, 14), datetime(2024, 3, 15))


def test_weeks_start_on_sunday():
    assert _window("current_week") == Interval(
        datetime(2024, 3, 10), datetime(2024, 3, 17)
    )
    assert _window("last_week") == Interval(datetime(2024, 3, 3), datetime(2024, 3, 10))
    # Sunday itself opens the week; Saturday still belongs to the previous one.
    assert start_of_week(datetime(2024, 3, 10, 8)) == datetime(2024, 3, 10)
    assert start_of_week(datetime(2024, 3, 16, 23, 59)) == datetime(2024, 3, 10)


def test_month_windows_cross_year_boundaries():
    assert _window("current_month") == Interval(
        datetime(2024, 3, 1), datetime(2024, 4, 1)
    )
    assert _window("last_month") == Interval(datetime(2024, 2, 1), datetime(2024, 3, 1))
    assert _window("last_month", datetime(2024, 1, 15)) == Interval(
        datetime(2023, 12, 1), datetime(2024, 1, 1)
    )
    assert _window("current_month", datetime(2023, 12, 31, 23)) == Interval(
        datetime(2023, 12, 1), datetime(2024, 1, 1)
    )


def test_unknown_bucket_means_no_window():
    assert DateWindow.from_name("next_decade").kind is DateWindowKind.NONE
    assert _window("next_decade") is None
    assert _window("") is None


def test_explicit_range_overrides_named_bucket_and_is_inclusive():
    event_filter = build_event_filter(
        date_filter="today", start_date="2024-01-01", end_date="2024-01-31T00:00:00Z"
    )
    assert event_filter.window.kind is DateWindowKind.EXPLICIT
    interval = event_filter.window.resolve(NOW)
    assert interval.start == datetime(2024, 1, 1)
    assert interval.end == datetime(2024, 1, 31)
    assert interval.contains(datetime(2024, 1, 31))
    assert not interval.contains(datetime(2024, 1, 31, 0, 0, 1))


def test_single_range_bound_is_ignored():
    event_filter = build_event_filter(date_filter="last_week", start_date="2024-01-01")
    assert event_filter.window.kind is DateWindowKind.LAST_WEEK


@pytest.mark.parametrize(
    "start, end, field",
    [("not-a-date", "2024-01-31", "startDate"), ("2024-01-01", "31/01/2024", "endDate")],
)
def test_unparseable_range_bound_is_rejected(start, end, field):
    with pytest.raises(EventValidationError) as excinfo:
        build_event_filter(start_date=start, end_date=end)
    assert excinfo.value.field == field


def test_blank_search_is_dropped():
    assert build_event_filter(search="   ").search is None
    assert build_event_filter(search="  jazz ").search == "jazz"


@pytest.mark.parametrize(
    "page, limit, expected",
    [
        (None, None, PageRequest(1, 10)),
        ("2", "5", PageRequest(2, 5)),
        ("abc", "0", PageRequest(1, 10)),
        (-3, -1, PageRequest(1, 10)),
        (True, "7", PageRequest(1, 7)),
        (1, 500, PageRequest(1, 100)),
    ],
)
def test_coerce_page_request_is_lenient(page, limit, expected):
    assert coerce_page_request(page, limit, default_limit=10, max_limit=100) == expected


def test_pagination_metadata():
    assert build_pagination(page_request=PageRequest(1, 10), total=0) == {
        "current": 1,
        "pages": 0,
        "total": 0,
    }
    assert build_pagination(page_request=PageRequest(2, 10), total=25)["pages"] == 3
    assert build_pagination(page_request=PageRequest(1, 5), total=5)["pages"] == 1
    assert PageRequest(3, 10).offset == 20


def test_list_events_pages_newest_first(session, make_user):
    creator = make_user()
    base = datetime(2024, 1, 1, 12)
    for i in range(1, 26):
        _add_event(session, creator, title=f"Event {i:02d}", date_time=base + timedelta(days=i))
    session.commit()

    events, pagination = list_events(
        session, page_request=PageRequest(page=2, limit=10), now=NOW
    )

    assert [event.title for event in events] == [
        f"Event {i:02d}" for i in range(15, 5, -1)
    ]
    assert pagination == {"current": 2, "pages": 3, "total": 25}


def test_list_events_page_past_the_end_is_empty(session, make_user):
    creator = make_user()
    _add_event(session, creator, title="Only one", date_time=NOW)
    session.commit()

    events, pagination = list_events(session, page_request=PageRequest(5, 10), now=NOW)

    assert events == []
    assert pagination == {"current": 5, "pages": 1, "total": 1}


def test_list_events_breaks_date_ties_by_id(session, make_user):
    creator = make_user()
    same_time = datetime(2024, 3, 20, 18)
    created = [
        _add_event(session, creator, title=f"Tie {n}", date_time=same_time)
        for n in range(4)
    ]
    session.commit()

    events, _ = list_events(session, now=NOW)

    assert [event.id for event in events] == sorted(event.id for event in created)


def test_search_matches_title_or_description_case_insensitively(session, make_user):
    creator = make_user()
    by_title = _add_event(
        session, creator, title="Jazz Night", date_time=datetime(2024, 3, 20)
    )
    by_description = _add_event(
        session,
        creator,
        title="Friday Social",
        description="Live JAZZ and board games",
        date_time=datetime(2024, 3, 21),
    )
    _add_event(session, creator, title="Python Meetup", date_time=datetime(2024, 3, 22))
    session.commit()

    events, pagination = list_events(
        session, event_filter=build_event_filter(search="jazz"), now=NOW
    )

    assert {event.id for event in events} == {by_title.id, by_description.id}
    assert pagination["total"] == 2


def test_search_treats_wildcards_literally(session, make_user):
    creator = make_user()
    literal = _add_event(
        session, creator, title="100% Uptime Panel", date_time=datetime(2024, 3, 20)
    )
    _add_event(session, creator, title="1000 Stars Party", date_time=datetime(2024, 3, 21))
    session.commit()

    events, _ = list_events(
        session, event_filter=build_event_filter(search="100%"), now=NOW
    )

    assert [event.id for event in events] == [literal.id]


def test_date_bucket_and_search_combine(session, make_user):
    creator = make_user()
    in_week = _add_event(
        session, creator, title="Jazz Brunch", date_time=datetime(2024, 3, 16, 23, 59)
    )
    _add_event(session, creator, title="Jazz Late Show", date_time=datetime(2024, 3, 17))
    _add_event(session, creator, title="Chess Club", date_time=datetime(2024, 3, 12))
    session.commit()

    event_filter = build_event_filter(search="jazz", date_filter="current_week")
    events, _ = list_events(session, event_filter=event_filter, now=NOW)

    assert [event.id for event in events] == [in_week.id]


def test_in_memory_match_agrees_with_sql(session, make_user):
    creator = make_user()
    events = [
        _add_event(session, creator, title=f"Gathering {n}", date_time=NOW + timedelta(days=n))
        for n in range(-40, 40, 3)
    ]
    session.commit()

    for event_filter in (
        EventFilter(),
        build_event_filter(date_filter="last_month"),
        build_event_filter(date_filter="current_week", search="gathering 1"),
        build_event_filter(start_date="2024-03-01", end_date="2024-03-20T00:00:00"),
    ):
        listed, _ = list_events(
            session, event_filter=event_filter, page_request=PageRequest(1, 100), now=NOW
        )
        expected = {event.id for event in events if event_filter.matches(event, NOW)}
        assert {event.id for event in listed} == expected


def test_bucket_names_must_match_exactly():
    for name in ("TODAY", " today", "Current_Week"):
        assert DateWindow.from_name(name).kind is DateWindowKind.NONE
    assert build_event_filter(date_filter="LAST_MONTH").window.resolve(NOW) is None


def test_huge_page_is_clamped_to_a_valid_offset():
    request = coerce_page_request(str(10**20), "10", default_limit=10, max_limit=100)

    assert request.limit == 10
    assert request.page == MAX_SQL_INT // 10 + 1
    assert request.offset <= MAX_SQL_INT
    unbounded = coerce_page_request(10**30, 10**30)
    assert unbounded.limit == MAX_SQL_INT
    assert unbounded.offset <= MAX_SQL_INT


def test_page_far_past_the_end_skips_the_query(session, make_user):
    creator = make_user()
    _add_event(session, creator, title="Lonely", date_time=NOW)
    session.commit()

    request = coerce_page_request(10**20, 10)
    events, pagination = list_events(session, page_request=request, now=NOW)

    assert events == []
    assert pagination == {"current": request.page, "pages": 1, "total": 1}
