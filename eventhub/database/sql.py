import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    DateTime,
    String,
    create_engine,
    delete,
    event as sa_event,
    func,
    insert,
    literal,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from eventhub.database.models import Base, EventAttendeeRow, EventRow, EventTagRow, UserRow
from eventhub.database.port import Snapshot, SnapshotQuery, StoragePort
from eventhub.errors import (
    AlreadyJoined,
    ConstraintConflict,
    EventFull,
    EventHubError,
    NotAttending,
    NotFound,
    StorageError,
)
from eventhub.schemas.event import Attendance, Event
from eventhub.schemas.user import User

logger = logging.getLogger(__name__)

JOINED = "joined"


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; everything is written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _unicode_lower(value):
    # SQLite's builtin lower() folds ASCII only
    return value.lower() if isinstance(value, str) else value


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqlStorage(StoragePort):
    """Relational backend: users, events, event_tags and event_attendees tables."""

    def __init__(self, database_url: str, timeout: float = 5.0):
        self.database_url = database_url
        self.timeout = timeout
        self.engine = None
        self._reader = None
        self._writer = None

    def open(self):
        is_sqlite = self.database_url.startswith("sqlite")
        engine_args = {"pool_pre_ping": True}

        if is_sqlite:
            engine_args["connect_args"] = {
                "timeout": self.timeout,
                "check_same_thread": False,
            }
        else:
            engine_args["pool_timeout"] = self.timeout
            if self.database_url.startswith("postgresql"):
                engine_args["connect_args"] = {
                    "connect_timeout": int(self.timeout),
                    "options": f"-c statement_timeout={int(self.timeout * 1000)}",
                }

        self.engine = create_engine(self.database_url, **engine_args)
        if is_sqlite:
            _configure_sqlite(self.engine)

        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to initialize database: {e}") from e

        # Writers take the write lock up front so a conditional insert can never
        # be interleaved with another writer on SQLite; readers get a snapshot.
        if is_sqlite:
            read_bind = self.engine
        else:
            read_bind = self.engine.execution_options(isolation_level="REPEATABLE READ")
        write_bind = self.engine.execution_options(sqlite_begin="IMMEDIATE")

        self._reader = sessionmaker(bind=read_bind, expire_on_commit=False)
        self._writer = sessionmaker(bind=write_bind, expire_on_commit=False)
        logger.info("SQL storage opened (%s)", self.engine.url.render_as_string())

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            logger.info("SQL storage closed")

    @contextmanager
    def _session(self, write: bool = False):
        if self._writer is None:
            raise StorageError("Storage is not open")
        factory = self._writer if write else self._reader
        try:
            with factory.begin() as session:
                yield session
        except EventHubError:
            raise
        except IntegrityError as e:
            logger.info("Constraint violation: %s", e.orig)
            raise ConstraintConflict() from e
        except SQLAlchemyError as e:
            logger.error("Database operation failed", exc_info=True)
            raise StorageError(f"Database operation failed: {e}") from e

    # users

    def add_user(self, user: User) -> User:
        with self._session(write=True) as session:
            taken = session.execute(
                select(UserRow.id).where(UserRow.email == user.email)
            ).first()
            if taken:
                raise ConstraintConflict("A user with this email already exists")
            session.add(
                UserRow(
                    id=user.id,
                    name=user.name,
                    email=user.email,
                    password_hash=user.passwordHash,
                    avatar=user.avatar,
                    created_at=user.createdAt,
                )
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    # events

    def insert_event(self, event: Event, tags: List[str], creator_attendance: Attendance):
        with self._session(write=True) as session:
            session.add(
                EventRow(
                    id=event.id,
                    name=event.name,
                    description=event.description,
                    date=event.date,
                    time=event.time,
                    location=event.location,
                    image=event.image,
                    capacity=event.capacity,
                    creator_id=event.creatorId,
                    created_at=event.createdAt,
                    updated_at=event.updatedAt,
                )
            )
            session.flush()
            _write_tags(session, event.id, tags)
            session.add(
                EventAttendeeRow(
                    event_id=creator_attendance.eventId,
                    user_id=creator_attendance.userId,
                    status=creator_attendance.status,
                    joined_at=creator_attendance.joinedAt,
                )
            )

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._session() as session:
            row = session.get(EventRow, event_id)
            return _to_event(row) if row else None

    def update_event(
        self,
        event_id: str,
        changes: dict,
        tags: Optional[List[str]],
        updated_at: datetime,
    ) -> Event:
        with self._session(write=True) as session:
            row = session.execute(
                select(EventRow).where(EventRow.id == event_id).with_for_update()
            ).scalar_one_or_none()
            if row is None:
                raise NotFound()

            capacity = changes.get("capacity")
            if capacity is not None and capacity < _count_active(session, event_id):
                raise ConstraintConflict(
                    "Capacity cannot be lower than the current number of attendees"
                )

            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = updated_at

            if tags is not None:
                _write_tags(session, event_id, tags)

            session.flush()
            return _to_event(row)

    def delete_event(self, event_id: str):
        with self._session(write=True) as session:
            found = session.execute(
                select(EventRow.id).where(EventRow.id == event_id).with_for_update()
            ).first()
            if not found:
                raise NotFound()

            # children first, all inside one transaction
            session.execute(delete(EventAttendeeRow).where(EventAttendeeRow.event_id == event_id))
            session.execute(delete(EventTagRow).where(EventTagRow.event_id == event_id))
            session.execute(delete(EventRow).where(EventRow.id == event_id))

    # attendance

    def insert_attendance(self, attendance: Attendance) -> Attendance:
        with self._session(write=True) as session:
            # row lock on the event serializes joins for the same event
            capacity = session.execute(
                select(EventRow.capacity)
                .where(EventRow.id == attendance.eventId)
                .with_for_update()
            ).scalar_one_or_none()
            if capacity is None:
                raise NotFound()

            already = session.execute(
                select(EventAttendeeRow.id).where(
                    EventAttendeeRow.event_id == attendance.eventId,
                    EventAttendeeRow.user_id == attendance.userId,
                    EventAttendeeRow.status == JOINED,
                )
            ).first()
            if already:
                raise AlreadyJoined()

            active = (
                select(func.count(EventAttendeeRow.id))
                .where(
                    EventAttendeeRow.event_id == attendance.eventId,
                    EventAttendeeRow.status == JOINED,
                )
                .scalar_subquery()
            )
            guarded = select(
                literal(attendance.eventId, String),
                literal(attendance.userId, String),
                literal(attendance.status, String),
                literal(attendance.joinedAt, DateTime(timezone=True)),
            ).where(active < capacity)

            result = session.execute(
                insert(EventAttendeeRow.__table__).from_select(
                    ["event_id", "user_id", "status", "joined_at"], guarded
                )
            )
            if result.rowcount == 0:
                raise EventFull()
        return attendance

    def delete_attendance(self, event_id: str, user_id: str):
        with self._session(write=True) as session:
            if session.get(EventRow, event_id) is None:
                raise NotFound()
            result = session.execute(
                delete(EventAttendeeRow)
                .where(
                    EventAttendeeRow.event_id == event_id,
                    EventAttendeeRow.user_id == user_id,
                    EventAttendeeRow.status == JOINED,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise NotAttending()

    # tags

    def replace_tags(self, event_id: str, tags: List[str]):
        with self._session(write=True) as session:
            if session.get(EventRow, event_id) is None:
                raise NotFound()
            _write_tags(session, event_id, tags)

    def get_tags(self, event_id: str) -> List[str]:
        with self._session() as session:
            if session.get(EventRow, event_id) is None:
                raise NotFound()
            return list(
                session.execute(
                    select(EventTagRow.tag)
                    .where(EventTagRow.event_id == event_id)
                    .order_by(EventTagRow.position)
                ).scalars()
            )

    # reads

    def read_snapshot(self, query: SnapshotQuery) -> Snapshot:
        snapshot = Snapshot()
        with self._session() as session:
            stmt = select(EventRow)

            if query.event_id:
                stmt = stmt.where(EventRow.id == query.event_id)
            if query.user_id:
                attends = (
                    select(EventAttendeeRow.id)
                    .where(
                        EventAttendeeRow.event_id == EventRow.id,
                        EventAttendeeRow.user_id == query.user_id,
                        EventAttendeeRow.status == JOINED,
                    )
                    .exists()
                )
                stmt = stmt.where(or_(EventRow.creator_id == query.user_id, attends))
            if query.search:
                pattern = _like_pattern(query.search)
                stmt = stmt.where(
                    or_(
                        EventRow.name.ilike(pattern, escape="\\"),
                        EventRow.description.ilike(pattern, escape="\\"),
                        EventRow.location.ilike(pattern, escape="\\"),
                    )
                )
            if query.tag:
                tagged = (
                    select(EventTagRow.id)
                    .where(EventTagRow.event_id == EventRow.id, EventTagRow.tag == query.tag)
                    .exists()
                )
                stmt = stmt.where(tagged)
            if query.location:
                stmt = stmt.where(EventRow.location.ilike(_like_pattern(query.location), escape="\\"))
            if query.date:
                stmt = stmt.where(EventRow.date == query.date)

            rows = session.execute(
                stmt.order_by(EventRow.date, EventRow.time, EventRow.created_at)
            ).scalars().all()
            if not rows:
                return snapshot

            event_ids = [row.id for row in rows]
            for row in rows:
                snapshot.events[row.id] = _to_event(row)
                snapshot.tags[row.id] = []
                snapshot.rosters[row.id] = []

            tag_rows = session.execute(
                select(EventTagRow)
                .where(EventTagRow.event_id.in_(event_ids))
                .order_by(EventTagRow.event_id, EventTagRow.position)
            ).scalars()
            for tag_row in tag_rows:
                snapshot.tags[tag_row.event_id].append(tag_row.tag)

            attendee_rows = session.execute(
                select(EventAttendeeRow, UserRow)
                .join(UserRow, UserRow.id == EventAttendeeRow.user_id)
                .where(
                    EventAttendeeRow.event_id.in_(event_ids),
                    EventAttendeeRow.status == JOINED,
                )
                .order_by(EventAttendeeRow.joined_at, EventAttendeeRow.id)
            ).all()
            for attendee, user in attendee_rows:
                snapshot.rosters[attendee.event_id].append(_to_attendance(attendee))
                snapshot.users[user.id] = _to_user(user)
            # same transaction as the tags, so the roster length is the count
            for event_id, roster in snapshot.rosters.items():
                snapshot.counts[event_id] = len(roster)

            missing = {row.creator_id for row in rows} - snapshot.users.keys()
            if missing:
                creators = session.execute(
                    select(UserRow).where(UserRow.id.in_(missing))
                ).scalars()
                for user in creators:
                    snapshot.users[user.id] = _to_user(user)

        return snapshot


def _configure_sqlite(engine):
    @sa_event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # SQLAlchemy emits BEGIN itself, see _on_begin
        dbapi_connection.isolation_level = None
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @sa_event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def _write_tags(session, event_id: str, tags: List[str]):
    session.execute(delete(EventTagRow).where(EventTagRow.event_id == event_id))
    session.add_all(
        EventTagRow(event_id=event_id, tag=tag, position=position)
        for position, tag in enumerate(tags)
    )


def _count_active(session, event_id: str) -> int:
    return session.execute(
        select(func.count(EventAttendeeRow.id)).where(
            EventAttendeeRow.event_id == event_id,
            EventAttendeeRow.status == JOINED,
        )
    ).scalar_one()


def _to_user(row: UserRow) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        avatar=row.avatar,
        passwordHash=row.password_hash,
        createdAt=_aware(row.created_at),
    )


def _to_event(row: EventRow) -> Event:
    return Event(
        id=row.id,
        name=row.name,
        description=row.description,
        date=row.date,
        time=row.time,
        location=row.location,
        image=row.image,
        capacity=row.capacity,
        creatorId=row.creator_id,
        createdAt=_aware(row.created_at),
        updatedAt=_aware(row.updated_at),
    )


def _to_attendance(row: EventAttendeeRow) -> Attendance:
    return Attendance(
        eventId=row.event_id,
        userId=row.user_id,
        status=row.status,
        joinedAt=_aware(row.joined_at),
    )
