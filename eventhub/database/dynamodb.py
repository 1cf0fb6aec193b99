import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from eventhub.database.port import Snapshot, SnapshotQuery, StoragePort
from eventhub.errors import (
    AlreadyJoined,
    ConstraintConflict,
    EventFull,
    NotAttending,
    NotFound,
    StorageError,
)
from eventhub.schemas.event import Attendance, Event
from eventhub.schemas.user import User

logger = logging.getLogger(__name__)

# item attributes written by the adapter itself, never part of a domain object
INTERNAL_FIELDS = {"PK", "SK", "entity", "attendeeCount", "tags", "deletedAt"}
BATCH_GET_LIMIT = 100
PARTITION_READ_ATTEMPTS = 3


def get_db_connection(
    endpoint_url: Optional[str],
    region_name: str = "us-east-1",
    aws_access_key_id: Optional[str] = None,
    aws_secret_access_key: Optional[str] = None,
    timeout: float = 5.0,
):
    """boto3 resource whose every call is bounded by ``timeout`` seconds."""
    config = Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    return boto3.resource(
        "dynamodb",
        endpoint_url=endpoint_url,
        region_name=region_name,
        aws_access_key_id=aws_access_key_id,
        aws_secret_access_key=aws_secret_access_key,
        config=config,
    )


def _event_key(event_id: str) -> dict:
    return {"PK": f"EVENT#{event_id}", "SK": "DETAIL"}


def _attendee_key(event_id: str, user_id: str) -> dict:
    return {"PK": f"EVENT#{event_id}", "SK": f"ATTENDEE#{user_id}"}


def _user_key(user_id: str) -> dict:
    return {"PK": f"USER#{user_id}", "SK": "PROFILE"}


def _email_key(email: str) -> dict:
    return {"PK": f"EMAIL#{email.lower()}", "SK": "USER"}


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class DynamoStorage(StoragePort):
    """Single-table document backend.

    Layout (PK / SK):
      USER#<id>  / PROFILE          user profile
      EMAIL#<e>  / USER             email uniqueness guard
      EVENT#<id> / DETAIL           event with embedded tag list and attendeeCount
      EVENT#<id> / ATTENDEE#<uid>   one active attendance

    ``attendeeCount`` is the guard for the conditional join write and the
    count every listing reports, since it lives on the same item as the tags.
    A single-event read also checks the attendee items against it.
    """

    def __init__(self, dynamodb_resource, table_name="EventHub"):
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table = None

    def open(self):
        self.table = self.dynamodb.Table(self.table_name)
        try:
            self.table.load()
        except ClientError as e:
            raise StorageError(f"Table {self.table_name} is not available: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"DynamoDB is not reachable: {e}") from e
        logger.info("DynamoDB storage opened (table %s)", self.table_name)

    def close(self):
        self.table = None
        logger.info("DynamoDB storage closed")

    @property
    def _client(self):
        return self.dynamodb.meta.client

    def _call(self, operation: str, fn, *args, **kwargs):
        """Run a boto3 call, turning transport and service failures into StorageError."""
        try:
            return fn(*args, **kwargs)
        except BotoCoreError as e:
            logger.warning("DynamoDB %s failed: %s", operation, e, exc_info=True)
            raise StorageError(f"Failed to {operation}: {e}") from e

    # users

    def add_user(self, user: User) -> User:
        item = {
            **_user_key(user.id),
            "entity": "user",
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "passwordHash": user.passwordHash,
            "avatar": user.avatar,
            "createdAt": user.createdAt.isoformat(),
        }
        transact_items = [
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": item,
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": {**_email_key(user.email), "userId": user.id},
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
        ]
        try:
            self._call("add user", self._client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) == "TransactionCanceledException":
                raise ConstraintConflict("A user with this email already exists") from e
            raise StorageError(f"Failed to add user: {e}") from e
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        item = self._get_item(_user_key(user_id))
        return _to_user(item) if item else None

    # events

    def insert_event(self, event: Event, tags: List[str], creator_attendance: Attendance):
        event_item = {
            **_event_key(event.id),
            "entity": "event",
            **_event_attributes(event),
            "tags": list(tags),
            "attendeeCount": 1,
        }
        transact_items = [
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": event_item,
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": _attendance_item(creator_attendance),
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
            {
                # creator must exist
                "ConditionCheck": {
                    "TableName": self.table_name,
                    "Key": _user_key(event.creatorId),
                    "ConditionExpression": "attribute_exists(PK)",
                }
            },
        ]
        try:
            self._call("create event", self._client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) == "TransactionCanceledException":
                if self.get_user(event.creatorId) is None:
                    raise NotFound("User not found") from e
                raise ConstraintConflict("Event already exists") from e
            raise StorageError(f"Failed to create event: {e}") from e

    def get_event(self, event_id: str) -> Optional[Event]:
        item = self._live_event_item(event_id)
        return _to_event(item) if item else None

    def update_event(
        self,
        event_id: str,
        changes: dict,
        tags: Optional[List[str]],
        updated_at: datetime,
    ) -> Event:
        assignments = {**changes, "updatedAt": updated_at.isoformat()}
        if tags is not None:
            assignments["tags"] = list(tags)

        names = {}
        values = {}
        set_clauses = []
        for index, (field, value) in enumerate(assignments.items()):
            names[f"#f{index}"] = field
            values[f":v{index}"] = value
            set_clauses.append(f"#f{index} = :v{index}")

        condition = "attribute_exists(PK) AND attribute_not_exists(deletedAt)"
        if changes.get("capacity") is not None:
            names["#count"] = "attendeeCount"
            values[":capacity"] = changes["capacity"]
            condition += " AND #count <= :capacity"

        try:
            response = self._call(
                "update event",
                self.table.update_item,
                Key=_event_key(event_id),
                UpdateExpression="SET " + ", ".join(set_clauses),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                if self._live_event_item(event_id) is None:
                    raise NotFound() from e
                raise ConstraintConflict(
                    "Capacity cannot be lower than the current number of attendees"
                ) from e
            raise StorageError(f"Failed to update event: {e}") from e

        return _to_event(response["Attributes"])

    def delete_event(self, event_id: str):
        # Mark first: one conditional write hides the event and its roster
        # from every reader and blocks further joins.
        try:
            self._call(
                "delete event",
                self.table.update_item,
                Key=_event_key(event_id),
                UpdateExpression="SET deletedAt = :now",
                ConditionExpression="attribute_exists(PK) AND attribute_not_exists(deletedAt)",
                ExpressionAttributeValues={":now": datetime.now(timezone.utc).isoformat()},
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise NotFound() from e
            raise StorageError(f"Failed to delete event: {e}") from e

        # The delete is committed once marked; leftovers stay hidden behind the
        # tombstone and are only logged.
        try:
            items = self._query_partition(event_id)
            with self.table.batch_writer() as batch:
                for item in items:
                    if item["SK"] != "DETAIL":
                        batch.delete_item(Key={"PK": item["PK"], "SK": item["SK"]})
            self.table.delete_item(Key=_event_key(event_id))
        except (ClientError, BotoCoreError, StorageError) as e:
            logger.error(
                "Event %s deleted but cleanup is incomplete, partition EVENT#%s left behind: %s",
                event_id,
                event_id,
                e,
            )

    # attendance

    def insert_attendance(self, attendance: Attendance) -> Attendance:
        event_key = _event_key(attendance.eventId)
        transact_items = [
            {
                # capacity guard and counter bump in the same transaction as the put
                "Update": {
                    "TableName": self.table_name,
                    "Key": event_key,
                    "UpdateExpression": "SET attendeeCount = attendeeCount + :one",
                    "ConditionExpression": (
                        "attribute_exists(PK) AND attribute_not_exists(deletedAt) "
                        "AND attendeeCount < #capacity"
                    ),
                    "ExpressionAttributeNames": {"#capacity": "capacity"},
                    "ExpressionAttributeValues": {":one": 1},
                }
            },
            {
                "Put": {
                    "TableName": self.table_name,
                    "Item": _attendance_item(attendance),
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
        ]
        try:
            self._call("join event", self._client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) != "TransactionCanceledException":
                raise StorageError(f"Failed to join event: {e}") from e

            event_item = self._live_event_item(attendance.eventId)
            if event_item is None:
                raise NotFound() from e
            if self._get_item(_attendee_key(attendance.eventId, attendance.userId)):
                raise AlreadyJoined() from e
            if int(event_item["attendeeCount"]) >= int(event_item["capacity"]):
                raise EventFull() from e
            # lost a race with another transaction on the same event
            raise ConstraintConflict("Concurrent update, please retry") from e

        return attendance

    def delete_attendance(self, event_id: str, user_id: str):
        transact_items = [
            {
                "Delete": {
                    "TableName": self.table_name,
                    "Key": _attendee_key(event_id, user_id),
                    "ConditionExpression": "attribute_exists(PK)",
                }
            },
            {
                "Update": {
                    "TableName": self.table_name,
                    "Key": _event_key(event_id),
                    "UpdateExpression": "SET attendeeCount = attendeeCount - :one",
                    "ConditionExpression": "attribute_exists(PK) AND attribute_not_exists(deletedAt)",
                    "ExpressionAttributeValues": {":one": 1},
                }
            },
        ]
        try:
            self._call("leave event", self._client.transact_write_items, TransactItems=transact_items)
        except ClientError as e:
            if _error_code(e) != "TransactionCanceledException":
                raise StorageError(f"Failed to leave event: {e}") from e
            if self._live_event_item(event_id) is None:
                raise NotFound() from e
            raise NotAttending() from e

    # tags

    def replace_tags(self, event_id: str, tags: List[str]):
        # the tag list lives on the event item, so a single write swaps it
        try:
            self._call(
                "replace tags",
                self.table.update_item,
                Key=_event_key(event_id),
                UpdateExpression="SET tags = :tags",
                ConditionExpression="attribute_exists(PK) AND attribute_not_exists(deletedAt)",
                ExpressionAttributeValues={":tags": list(tags)},
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise NotFound() from e
            raise StorageError(f"Failed to replace tags: {e}") from e

    def get_tags(self, event_id: str) -> List[str]:
        item = self._live_event_item(event_id)
        if item is None:
            raise NotFound()
        return list(item.get("tags", []))

    # reads

    def read_snapshot(self, query: SnapshotQuery) -> Snapshot:
        if query.event_id:
            items = self._read_event_partition(query.event_id)
        else:
            items = self._scan_events()

        snapshot = Snapshot()
        attendee_items = []
        for item in items:
            if item.get("entity") == "event":
                if "deletedAt" in item:
                    continue
                event = _to_event(item)
                snapshot.events[event.id] = event
                snapshot.tags[event.id] = list(item.get("tags", []))
                snapshot.counts[event.id] = int(item.get("attendeeCount", 0))
                snapshot.rosters[event.id] = []
            elif item.get("entity") == "attendance":
                attendee_items.append(item)

        for item in attendee_items:
            # orphans of an event mid-deletion are skipped with it
            if item["eventId"] in snapshot.rosters:
                snapshot.rosters[item["eventId"]].append(_to_attendance(item))
        for roster in snapshot.rosters.values():
            roster.sort(key=lambda a: (a.joinedAt, a.userId))

        if query.user_id:
            for event_id in list(snapshot.events):
                event = snapshot.events[event_id]
                attends = any(a.userId == query.user_id for a in snapshot.rosters[event_id])
                if event.creatorId != query.user_id and not attends:
                    del snapshot.events[event_id]
                    del snapshot.tags[event_id]
                    del snapshot.counts[event_id]
                    del snapshot.rosters[event_id]

        user_ids = {event.creatorId for event in snapshot.events.values()}
        for roster in snapshot.rosters.values():
            user_ids.update(a.userId for a in roster)
        snapshot.users = self._batch_get_users(sorted(user_ids))
        return snapshot

    # helpers

    def _get_item(self, key: dict) -> Optional[dict]:
        try:
            response = self._call("read item", self.table.get_item, Key=key, ConsistentRead=True)
        except ClientError as e:
            raise StorageError(f"Failed to read item: {e}") from e
        return response.get("Item")

    def _live_event_item(self, event_id: str) -> Optional[dict]:
        item = self._get_item(_event_key(event_id))
        if item is None or "deletedAt" in item:
            return None
        return item

    def _query_partition(self, event_id: str) -> List[dict]:
        items = []
        params = {
            "KeyConditionExpression": Key("PK").eq(f"EVENT#{event_id}"),
            "ConsistentRead": True,
        }
        try:
            while True:
                response = self._call("query event", self.table.query, **params)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            raise StorageError(f"Failed to query event: {e}") from e
        return items

    def _read_event_partition(self, event_id: str) -> List[dict]:
        """Query one event until its attendee items agree with attendeeCount.

        Query pages are read at different instants; a join or leave landing
        between pages leaves a roster that no committed state ever had.
        """
        for attempt in range(1, PARTITION_READ_ATTEMPTS + 1):
            items = self._query_partition(event_id)
            detail = next((i for i in items if i["SK"] == "DETAIL"), None)
            if detail is None or "deletedAt" in detail:
                return items
            attendees = sum(1 for i in items if i.get("entity") == "attendance")
            if attendees == int(detail.get("attendeeCount", 0)):
                return items
            logger.info(
                "Event %s changed during read (attempt %d/%d)",
                event_id,
                attempt,
                PARTITION_READ_ATTEMPTS,
            )
        raise StorageError(f"Event {event_id} kept changing while being read")

    def _scan_events(self) -> List[dict]:
        items = []
        params = {
            "FilterExpression": Attr("entity").is_in(["event", "attendance"]),
            "ConsistentRead": True,
        }
        try:
            while True:
                response = self._call("scan events", self.table.scan, **params)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            raise StorageError(f"Failed to scan events: {e}") from e
        return items

    def _batch_get_users(self, user_ids: List[str]) -> Dict[str, User]:
        users = {}
        try:
            for start in range(0, len(user_ids), BATCH_GET_LIMIT):
                request = {
                    self.table_name: {
                        "Keys": [_user_key(uid) for uid in user_ids[start : start + BATCH_GET_LIMIT]],
                        "ConsistentRead": True,
                    }
                }
                while request:
                    response = self._call(
                        "read users", self.dynamodb.batch_get_item, RequestItems=request
                    )
                    for item in response.get("Responses", {}).get(self.table_name, []):
                        users[item["id"]] = _to_user(item)
                    request = response.get("UnprocessedKeys") or None
        except ClientError as e:
            raise StorageError(f"Failed to read users: {e}") from e
        return users


def _event_attributes(event: Event) -> dict:
    return {
        "id": event.id,
        "name": event.name,
        "description": event.description,
        "date": event.date,
        "time": event.time,
        "location": event.location,
        "image": event.image,
        "capacity": event.capacity,
        "creatorId": event.creatorId,
        "createdAt": event.createdAt.isoformat(),
        "updatedAt": event.updatedAt.isoformat(),
    }


def _attendance_item(attendance: Attendance) -> dict:
    return {
        **_attendee_key(attendance.eventId, attendance.userId),
        "entity": "attendance",
        "eventId": attendance.eventId,
        "userId": attendance.userId,
        "status": attendance.status,
        "joinedAt": attendance.joinedAt.isoformat(),
    }


def _plain(item: dict) -> dict:
    """Drop internal attributes and turn DynamoDB numbers back into ints."""
    return {
        k: int(v) if isinstance(v, Decimal) else v
        for k, v in item.items()
        if k not in INTERNAL_FIELDS
    }


def _to_user(item: dict) -> User:
    return User(**_plain(item))


def _to_event(item: dict) -> Event:
    return Event(**_plain(item))


def _to_attendance(item: dict) -> Attendance:
    return Attendance(**_plain(item))
