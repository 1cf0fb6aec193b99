from typing import List, Optional

from eventhub.database.port import Snapshot, SnapshotQuery, StoragePort
from eventhub.errors import NotFound, StorageError
from eventhub.schemas.event import (
    AttendeeOut,
    CreatorOut,
    Event,
    EventDetail,
    EventFilters,
    EventSummary,
    Pagination,
)
from eventhub.schemas.user import ActivityOut, User, UserOut, UserProfile, UserStats

RECENT_PER_KIND = 5
RECENT_ACTIVITY_LIMIT = 10


class QueryEngine:
    """Read side: denormalized event views built from one storage snapshot.

    Attendee counts, creator names and tag lists are joined here on every
    read, whatever backend produced the snapshot.
    """

    def __init__(self, storage: StoragePort):
        self.storage = storage

    def list_events(
        self,
        filters: Optional[EventFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> List[EventSummary]:
        filters = filters or EventFilters()
        pagination = pagination or Pagination()

        snapshot = self.storage.read_snapshot(
            SnapshotQuery(
                search=filters.search,
                tag=filters.tag,
                location=filters.location,
                date=filters.date,
            )
        )

        events = [
            event
            for event in snapshot.events.values()
            if self._matches_all_filters(event, snapshot.tags[event.id], filters)
        ]
        events.sort(key=lambda e: (e.date, e.time, e.createdAt))

        page = events[pagination.offset : pagination.offset + pagination.limit]
        return [self._summary(event, snapshot) for event in page]

    def get_event(self, event_id: str, requesting_user_id: Optional[str] = None) -> EventDetail:
        snapshot = self.storage.read_snapshot(SnapshotQuery(event_id=event_id))
        event = snapshot.events.get(event_id)
        if event is None:
            raise NotFound()

        roster = snapshot.rosters[event_id]
        creator = self._user(snapshot, event.creatorId)
        attendees = []
        for attendance in roster:
            user = self._user(snapshot, attendance.userId)
            attendees.append(
                AttendeeOut(
                    id=user.id,
                    name=user.name,
                    avatar=user.avatar,
                    joinedAt=attendance.joinedAt,
                )
            )

        summary = self._summary(event, snapshot)
        return EventDetail(
            **summary.model_dump(),
            creator=CreatorOut(id=creator.id, name=creator.name, email=creator.email),
            isAttending=requesting_user_id is not None
            and any(a.userId == requesting_user_id for a in roster),
            attendeesList=attendees,
        )

    def created_by(self, user_id: str) -> List[EventSummary]:
        """Events the user created, newest first"""
        snapshot = self._user_snapshot(user_id)
        events = [e for e in snapshot.events.values() if e.creatorId == user_id]
        events.sort(key=lambda e: e.createdAt, reverse=True)
        return [self._summary(event, snapshot) for event in events]

    def joined_by(self, user_id: str) -> List[EventSummary]:
        """Events the user attends, most recently joined first"""
        snapshot = self._user_snapshot(user_id)
        joined = []
        for event in snapshot.events.values():
            for attendance in snapshot.rosters[event.id]:
                if attendance.userId == user_id:
                    joined.append((attendance.joinedAt, event))
        joined.sort(key=lambda pair: pair[0], reverse=True)
        return [self._summary(event, snapshot) for _, event in joined]

    def user_stats(self, user_id: str) -> UserStats:
        return self._stats(self._user_snapshot(user_id), user_id)

    def recent_activity(self, user_id: str) -> List[ActivityOut]:
        return self._activity(self._user_snapshot(user_id), user_id)

    def profile(self, user_id: str) -> UserProfile:
        """User record, stats and recent activity from one snapshot"""
        user = self.storage.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        snapshot = self.storage.read_snapshot(SnapshotQuery(user_id=user_id))
        return UserProfile(
            user=UserOut(**user.model_dump(exclude={"passwordHash"})),
            stats=self._stats(snapshot, user_id),
            recentActivity=self._activity(snapshot, user_id),
        )

    def _stats(self, snapshot: Snapshot, user_id: str) -> UserStats:
        created = 0
        joined = 0
        connections = set()
        for event in snapshot.events.values():
            if event.creatorId == user_id:
                created += 1
            members = {a.userId for a in snapshot.rosters[event.id]}
            if user_id in members:
                joined += 1
                connections.update(members - {user_id})
        return UserStats(eventsCreated=created, eventsJoined=joined, connections=len(connections))

    def _activity(self, snapshot: Snapshot, user_id: str) -> List[ActivityOut]:
        """Latest created and joined events, newest first

        At most RECENT_PER_KIND of each kind and RECENT_ACTIVITY_LIMIT overall;
        joining your own event is reported as creating it.
        """
        created = [
            ActivityOut(type="created", eventId=e.id, eventName=e.name, timestamp=e.createdAt)
            for e in snapshot.events.values()
            if e.creatorId == user_id
        ]
        joined = [
            ActivityOut(type="joined", eventId=e.id, eventName=e.name, timestamp=a.joinedAt)
            for e in snapshot.events.values()
            if e.creatorId != user_id
            for a in snapshot.rosters[e.id]
            if a.userId == user_id
        ]

        def newest(activities):
            return sorted(activities, key=lambda a: a.timestamp, reverse=True)

        merged = newest(created)[:RECENT_PER_KIND] + newest(joined)[:RECENT_PER_KIND]
        return newest(merged)[:RECENT_ACTIVITY_LIMIT]

    def _user_snapshot(self, user_id: str) -> Snapshot:
        if self.storage.get_user(user_id) is None:
            raise NotFound("User not found")
        return self.storage.read_snapshot(SnapshotQuery(user_id=user_id))

    def _matches_all_filters(self, event: Event, tags: List[str], filters: EventFilters) -> bool:
        """Check if event matches ALL filter criteria"""

        if filters.search:
            needle = filters.search.lower()
            haystacks = (event.name, event.description, event.location)
            if not any(needle in text.lower() for text in haystacks):
                return False

        if filters.tag:
            if filters.tag not in tags:
                return False

        if filters.location:
            if filters.location.lower() not in event.location.lower():
                return False

        if filters.date:
            if event.date != filters.date:
                return False

        return True

    def _summary(self, event: Event, snapshot: Snapshot) -> EventSummary:
        creator = self._user(snapshot, event.creatorId)
        return EventSummary(
            **event.model_dump(),
            attendeeCount=snapshot.counts[event.id],
            creatorName=creator.name,
            tags=list(snapshot.tags[event.id]),
        )

    @staticmethod
    def _user(snapshot: Snapshot, user_id: str) -> User:
        user = snapshot.users.get(user_id)
        if user is None:
            raise StorageError(f"User record {user_id} referenced by an event is missing")
        return user
