import pytest
from botocore.exceptions import EndpointConnectionError

from eventhub.errors import NotFound, StorageError
from eventhub.schemas.user import UserCreate
from eventhub.services.attendance_registry import AttendanceRegistry
from eventhub.services.event_store import EventStore
from eventhub.services.query_engine import QueryEngine
from eventhub.services.tag_index import TagIndex
from eventhub.services.user_service import UserService


@pytest.fixture
def services(dynamo_storage):
    registry = AttendanceRegistry(dynamo_storage)
    store = EventStore(dynamo_storage, TagIndex(dynamo_storage), registry)
    return store, registry, QueryEngine(dynamo_storage)


@pytest.fixture
def members(dynamo_storage):
    users = UserService(dynamo_storage)
    return [
        users.create_user(UserCreate(name=name, email=f"{name.lower()}@example.com", passwordHash="x"))
        for name in ["Host", "Guest", "Other"]
    ]


def _put_stray_attendee(storage, event_id, user_id):
    """An attendee item the event's counter does not know about yet.

    This is what a paginated read sees when a join commits between pages.
    """
    storage.table.put_item(
        Item={
            "PK": f"EVENT#{event_id}",
            "SK": f"ATTENDEE#{user_id}",
            "entity": "attendance",
            "eventId": event_id,
            "userId": user_id,
            "status": "joined",
            "joinedAt": "2099-01-01T00:00:00+00:00",
        }
    )


def test_listing_count_comes_from_event_item(dynamo_storage, services, members, make_draft):
    store, registry, queries = services
    event = store.create_event(make_draft(capacity=2), members[0].id)
    registry.join(event.id, members[1].id)
    _put_stray_attendee(dynamo_storage, event.id, members[2].id)

    [summary] = queries.list_events()

    assert summary.attendeeCount == 2
    assert summary.attendeeCount <= summary.capacity
    assert summary.tags == ["Tech", "Networking"]


def test_event_read_gives_up_on_a_moving_roster(dynamo_storage, services, members, make_draft):
    store, registry, queries = services
    event = store.create_event(make_draft(capacity=2), members[0].id)
    registry.join(event.id, members[1].id)
    _put_stray_attendee(dynamo_storage, event.id, members[2].id)

    with pytest.raises(StorageError) as exc_info:
        queries.get_event(event.id)

    assert exc_info.value.retryable is True


def test_event_read_retries_until_roster_matches(
    dynamo_storage, services, members, make_draft, monkeypatch
):
    store, registry, queries = services
    event = store.create_event(make_draft(), members[0].id)
    registry.join(event.id, members[1].id)

    real_query = dynamo_storage._query_partition
    calls = []

    def query_mid_join(event_id):
        items = real_query(event_id)
        calls.append(event_id)
        if len(calls) == 1:
            # first read catches an attendee whose join has not bumped the counter
            items.append(
                {
                    "PK": f"EVENT#{event_id}",
                    "SK": f"ATTENDEE#{members[2].id}",
                    "entity": "attendance",
                    "eventId": event_id,
                    "userId": members[2].id,
                    "status": "joined",
                    "joinedAt": "2099-01-01T00:00:00+00:00",
                }
            )
        return items

    monkeypatch.setattr(dynamo_storage, "_query_partition", query_mid_join)

    detail = queries.get_event(event.id)

    assert len(calls) == 2
    assert detail.attendeeCount == 2
    assert [a.id for a in detail.attendeesList] == [members[0].id, members[1].id]


def test_delete_succeeds_when_cleanup_fails(dynamo_storage, services, members, make_draft, monkeypatch):
    """Once the tombstone is written the event is gone, whatever the cleanup does"""
    store, registry, queries = services
    event = store.create_event(make_draft(), members[0].id)
    registry.join(event.id, members[1].id)

    def unreachable(*args, **kwargs):
        raise EndpointConnectionError(endpoint_url="http://dynamodb-local:8000")

    monkeypatch.setattr(dynamo_storage.table, "batch_writer", unreachable)

    store.delete_event(event.id, members[0].id)

    with pytest.raises(NotFound):
        queries.get_event(event.id)
    assert queries.list_events() == []
    assert queries.joined_by(members[1].id) == []
    with pytest.raises(NotFound):
        registry.join(event.id, members[2].id)
    with pytest.raises(NotFound):
        store.delete_event(event.id, members[0].id)
