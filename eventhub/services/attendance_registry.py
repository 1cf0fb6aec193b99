import logging
from datetime import datetime, timezone
from typing import Callable, List

from eventhub.database.port import SnapshotQuery, StoragePort
from eventhub.errors import AlreadyJoined, EventFull, NotAttending, NotFound
from eventhub.schemas.event import Attendance

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceRegistry:
    """Owns event rosters: who is in, and that nobody gets in past capacity.

    Per (event, user) pair there are two states, absent and joined.
    ``join`` moves absent -> joined, ``leave`` moves joined -> absent; a
    later ``join`` creates a fresh attendance.
    """

    def __init__(self, storage: StoragePort, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock

    def new_attendance(self, event_id: str, user_id: str) -> Attendance:
        return Attendance(
            eventId=event_id, userId=user_id, status="joined", joinedAt=self.clock()
        )

    def join(self, event_id: str, user_id: str) -> Attendance:
        if self.storage.get_user(user_id) is None:
            raise NotFound("User not found")

        attendance = self.new_attendance(event_id, user_id)
        try:
            # capacity check and insert are one conditional write in the storage
            self.storage.insert_attendance(attendance)
        except (EventFull, AlreadyJoined, NotFound) as e:
            logger.info("User %s could not join event %s: %s", user_id, event_id, e.code)
            raise

        logger.info("User %s joined event %s", user_id, event_id)
        return attendance

    def leave(self, event_id: str, user_id: str) -> None:
        try:
            self.storage.delete_attendance(event_id, user_id)
        except (NotAttending, NotFound) as e:
            logger.info("User %s could not leave event %s: %s", user_id, event_id, e.code)
            raise

        logger.info("User %s left event %s", user_id, event_id)

    def roster(self, event_id: str) -> List[Attendance]:
        """Active attendances of an event, earliest join first"""
        snapshot = self.storage.read_snapshot(SnapshotQuery(event_id=event_id))
        if event_id not in snapshot.events:
            raise NotFound()
        return snapshot.rosters[event_id]
