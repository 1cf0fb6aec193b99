import logging
import uuid
from datetime import date, datetime, time
from typing import Callable, List

from eventhub.database.port import StoragePort
from eventhub.errors import InvalidDate, NoUpdates, NotFound, Unauthorized
from eventhub.schemas.event import Event, EventCreate, EventUpdate
from eventhub.services.attendance_registry import AttendanceRegistry, utcnow
from eventhub.services.tag_index import TagIndex

logger = logging.getLogger(__name__)


def event_start(event_date: str, event_time: str) -> datetime:
    """Local wall-clock start of an event; InvalidDate if the calendar values are bogus."""
    try:
        return datetime.combine(date.fromisoformat(event_date), time.fromisoformat(event_time))
    except ValueError as e:
        raise InvalidDate(f"Invalid event date or time: {event_date} {event_time}") from e


class EventStore:
    """Event CRUD restricted to the event's creator.

    ``now`` is the local wall clock used to reject events starting in the
    past; ``clock`` stamps createdAt/updatedAt in UTC.
    """

    def __init__(
        self,
        storage: StoragePort,
        tag_index: TagIndex,
        attendance: AttendanceRegistry,
        now: Callable[[], datetime] = datetime.now,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.tag_index = tag_index
        self.attendance = attendance
        self.now = now
        self.clock = clock

    def create_event(self, draft: EventCreate, creator_id: str) -> Event:
        """Create an event; the creator becomes its first attendee in the same write"""
        if event_start(draft.date, draft.time) < self.now():
            raise InvalidDate()

        if self.storage.get_user(creator_id) is None:
            raise NotFound("User not found")

        timestamp = self.clock()
        event = Event(
            id=str(uuid.uuid4()),
            name=draft.name,
            description=draft.description,
            date=draft.date,
            time=draft.time,
            location=draft.location,
            image=draft.image or None,
            capacity=draft.capacity,
            creatorId=creator_id,
            createdAt=timestamp,
            updatedAt=timestamp,
        )
        tags = self.tag_index.normalize(draft.tags)
        creator_attendance = self.attendance.new_attendance(event.id, creator_id)

        self.storage.insert_event(event, tags, creator_attendance)
        logger.info("User %s created event %s", creator_id, event.id)
        return event

    def update_event(self, event_id: str, patch: EventUpdate, requester_id: str) -> Event:
        """Apply a partial update.

        A tag list in the patch is normalized by the tag index and written by
        the same storage call as the fields, so both change together.
        """
        event = self._owned_event(event_id, requester_id)

        changes = patch.changes()
        if not changes and patch.tags is None:
            raise NoUpdates()

        tags = self.tag_index.normalize(patch.tags) if patch.tags is not None else None
        updated = self.storage.update_event(event.id, changes, tags, self.clock())
        logger.info("User %s updated event %s (%s)", requester_id, event_id, sorted(changes))
        return updated

    def replace_tags(self, event_id: str, tags: List[str], requester_id: str) -> List[str]:
        self._owned_event(event_id, requester_id)
        return self.tag_index.replace(event_id, tags)

    def delete_event(self, event_id: str, requester_id: str) -> None:
        event = self._owned_event(event_id, requester_id)
        self.storage.delete_event(event.id)
        logger.info("User %s deleted event %s", requester_id, event_id)

    def _owned_event(self, event_id: str, requester_id: str) -> Event:
        event = self.storage.get_event(event_id)
        if event is None:
            raise NotFound()
        if event.creatorId != requester_id:
            logger.info("User %s may not modify event %s", requester_id, event_id)
            raise Unauthorized()
        return event
