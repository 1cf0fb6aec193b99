from .user import (
    UserBase,
    UserCreate,
    UserOut,
    User,
    UserStats,
    ActivityOut,
    UserProfile,
    Principal,
)
from .event import (
    EventBase,
    EventCreate,
    EventUpdate,
    TagsUpdate,
    Event,
    Attendance,
    EventFilters,
    Pagination,
    EventSummary,
    EventDetail,
    CreatorOut,
    AttendeeOut,
)

__all__ = [
    "UserBase",
    "UserCreate",
    "UserOut",
    "User",
    "UserStats",
    "ActivityOut",
    "UserProfile",
    "Principal",
    "EventBase",
    "EventCreate",
    "EventUpdate",
    "TagsUpdate",
    "Event",
    "Attendance",
    "EventFilters",
    "Pagination",
    "EventSummary",
    "EventDetail",
    "CreatorOut",
    "AttendeeOut",
]
