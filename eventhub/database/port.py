from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from eventhub.schemas.event import Attendance, Event
from eventhub.schemas.user import User


@dataclass
class SnapshotQuery:
    """What a snapshot read should cover.

    Adapters may use the listing filters to narrow what they load, but the
    query engine re-applies them, so ignoring them is always correct.
    """

    event_id: Optional[str] = None
    # events the user created or attends
    user_id: Optional[str] = None
    search: Optional[str] = None
    tag: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None


@dataclass
class Snapshot:
    """Events with their tags, rosters and referenced users, read at one instant.

    ``counts`` holds each event's attendee count as stored alongside its
    tags; listings report it instead of the roster length.
    """

    events: Dict[str, Event] = field(default_factory=dict)
    tags: Dict[str, List[str]] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)
    rosters: Dict[str, List[Attendance]] = field(default_factory=dict)
    users: Dict[str, User] = field(default_factory=dict)


class StoragePort(ABC):
    """Persistence contract shared by the relational and document backends.

    Every method is one atomic unit. Domain failures are raised as the
    typed errors in ``eventhub.errors``; driver failures surface as
    ``StorageError`` (or ``ConstraintConflict`` for unique-key races).
    """

    @abstractmethod
    def open(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    # users

    @abstractmethod
    def add_user(self, user: User) -> User:
        """Persist a user; ConstraintConflict if the email is taken."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    # events

    @abstractmethod
    def insert_event(
        self, event: Event, tags: List[str], creator_attendance: Attendance
    ) -> None:
        """Store the event, its tag set and the creator's attendance together."""

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[Event]:
        ...

    @abstractmethod
    def update_event(
        self,
        event_id: str,
        changes: dict,
        tags: Optional[List[str]],
        updated_at: datetime,
    ) -> Event:
        """Apply field changes (and a tag set, if given) in one unit.

        NotFound if the event is gone; ConstraintConflict if the new
        capacity is below the current attendee count.
        """

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        """Remove the event with its roster and tags; NotFound if absent."""

    # attendance

    @abstractmethod
    def insert_attendance(self, attendance: Attendance) -> Attendance:
        """Conditionally add an active attendance.

        Checks, in order: NotFound, AlreadyJoined, EventFull. The capacity
        check and the insert happen in the same atomic unit.
        """

    @abstractmethod
    def delete_attendance(self, event_id: str, user_id: str) -> None:
        """NotFound if the event is absent, NotAttending if the pair is not active."""

    # tags

    @abstractmethod
    def replace_tags(self, event_id: str, tags: List[str]) -> None:
        ...

    @abstractmethod
    def get_tags(self, event_id: str) -> List[str]:
        ...

    # reads

    @abstractmethod
    def read_snapshot(self, query: SnapshotQuery) -> Snapshot:
        """Load events, tags, rosters (joinedAt order) and users consistently."""
