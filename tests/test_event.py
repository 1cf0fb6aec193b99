from datetime import datetime

import pytest

from eventhub.errors import ConstraintConflict, InvalidDate, NoUpdates, NotFound, Unauthorized
from eventhub.schemas.event import Event, EventUpdate
from eventhub.services.event_store import EventStore


def test_create_event_success(event_store, query_engine, sample_users, make_draft):
    """Test basic event creation: creator is the first attendee"""
    creator = sample_users[0]
    draft = make_draft()

    result = event_store.create_event(draft, creator.id)

    assert isinstance(result, Event)
    assert result.name == draft.name
    assert result.capacity == 30
    assert result.creatorId == creator.id
    assert result.id

    detail = query_engine.get_event(result.id, creator.id)
    assert detail.attendeeCount == 1
    assert [a.id for a in detail.attendeesList] == [creator.id]
    assert detail.isAttending is True
    assert detail.tags == ["Tech", "Networking"]


def test_create_event_normalizes_tags_and_image(event_store, tag_index, sample_users, make_draft):
    event = event_store.create_event(
        make_draft(tags=[" Tech", "Tech", "", "Art "], image=""), sample_users[0].id
    )

    assert event.image is None
    assert tag_index.for_event(event.id) == ["Tech", "Art"]


def test_create_event_in_the_past(event_store, query_engine, sample_users, make_draft):
    with pytest.raises(InvalidDate):
        event_store.create_event(make_draft(date="2000-01-01"), sample_users[0].id)

    assert query_engine.list_events() == []


def test_create_event_date_boundary(storage, tag_index, attendance, sample_users, make_draft):
    """Only a start strictly before now is rejected"""
    store = EventStore(
        storage, tag_index, attendance, now=lambda: datetime(2030, 6, 1, 12, 0)
    )

    with pytest.raises(InvalidDate):
        store.create_event(make_draft(date="2030-06-01", time="11:59"), sample_users[0].id)

    event = store.create_event(make_draft(date="2030-06-01", time="12:00"), sample_users[0].id)
    assert event.time == "12:00"


def test_create_event_impossible_calendar_date(event_store, sample_users, make_draft):
    with pytest.raises(InvalidDate):
        event_store.create_event(make_draft(date="2099-02-30"), sample_users[0].id)


def test_create_event_unknown_creator(event_store, make_draft):
    with pytest.raises(NotFound):
        event_store.create_event(make_draft(), "missing-user")


def test_update_event_partial(event_store, query_engine, sample_users, make_draft):
    """Omitted fields stay unchanged; updatedAt moves forward"""
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)

    updated = event_store.update_event(
        event.id, EventUpdate(name="Renamed Meetup", capacity=10), creator.id
    )

    assert updated.name == "Renamed Meetup"
    assert updated.capacity == 10
    assert updated.description == event.description
    assert updated.location == event.location
    assert updated.updatedAt >= event.updatedAt

    detail = query_engine.get_event(event.id)
    assert detail.name == "Renamed Meetup"
    assert detail.tags == ["Tech", "Networking"]


def test_update_event_clears_image(event_store, query_engine, sample_users, make_draft):
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)

    event_store.update_event(event.id, EventUpdate(image=""), creator.id)

    assert query_engine.get_event(event.id).image is None


def test_update_event_replaces_tags(event_store, tag_index, sample_users, make_draft):
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)

    event_store.update_event(event.id, EventUpdate(tags=["Art", "Art", "Music"]), creator.id)

    assert tag_index.for_event(event.id) == ["Art", "Music"]


def test_update_event_past_date_allowed(event_store, sample_users, make_draft):
    """The date is only checked against now at creation"""
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)

    updated = event_store.update_event(event.id, EventUpdate(date="2001-01-01"), creator.id)

    assert updated.date == "2001-01-01"


def test_update_event_empty_patch(event_store, sample_users, make_draft):
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)

    with pytest.raises(NoUpdates):
        event_store.update_event(event.id, EventUpdate(), creator.id)


def test_update_event_by_non_creator(event_store, query_engine, sample_users, make_draft):
    event = event_store.create_event(make_draft(), sample_users[0].id)

    with pytest.raises(Unauthorized):
        event_store.update_event(event.id, EventUpdate(name="Hijacked"), sample_users[1].id)

    assert query_engine.get_event(event.id).name == event.name


def test_update_missing_event(event_store, sample_users):
    with pytest.raises(NotFound):
        event_store.update_event("missing", EventUpdate(name="Nothing"), sample_users[0].id)


def test_update_capacity_below_attendees(event_store, attendance, query_engine, sample_users, make_draft):
    creator = sample_users[0]
    event = event_store.create_event(make_draft(capacity=5), creator.id)
    attendance.join(event.id, sample_users[1].id)
    attendance.join(event.id, sample_users[2].id)

    with pytest.raises(ConstraintConflict):
        event_store.update_event(event.id, EventUpdate(capacity=2), creator.id)

    assert query_engine.get_event(event.id).capacity == 5
    # lowering to exactly the current count is fine
    assert event_store.update_event(event.id, EventUpdate(capacity=3), creator.id).capacity == 3


def test_delete_event_cascades(event_store, attendance, query_engine, tag_index, sample_users, make_draft):
    """After delete nothing about the event is visible"""
    creator = sample_users[0]
    event = event_store.create_event(make_draft(), creator.id)
    attendance.join(event.id, sample_users[1].id)

    event_store.delete_event(event.id, creator.id)

    with pytest.raises(NotFound):
        query_engine.get_event(event.id)
    with pytest.raises(NotFound):
        tag_index.for_event(event.id)
    with pytest.raises(NotFound):
        attendance.roster(event.id)
    assert query_engine.list_events() == []
    assert query_engine.joined_by(sample_users[1].id) == []


def test_delete_event_by_non_creator(event_store, query_engine, sample_users, make_draft):
    event = event_store.create_event(make_draft(), sample_users[0].id)

    with pytest.raises(Unauthorized):
        event_store.delete_event(event.id, sample_users[1].id)

    assert query_engine.get_event(event.id).id == event.id


def test_delete_missing_event(event_store, sample_users):
    with pytest.raises(NotFound):
        event_store.delete_event("missing", sample_users[0].id)
