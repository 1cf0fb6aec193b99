from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AnyHttpUrl, BaseModel, Field, StringConstraints, TypeAdapter, field_validator

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"

TagText = Annotated[str, StringConstraints(max_length=20)]

_url_adapter = TypeAdapter(AnyHttpUrl)


def _check_image(value: Optional[str]) -> Optional[str]:
    if value:
        _url_adapter.validate_python(value)
    return value


class EventBase(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    description: str = Field(min_length=10, max_length=1000)
    date: str = Field(pattern=DATE_PATTERN)
    time: str = Field(pattern=TIME_PATTERN)
    location: str = Field(min_length=3, max_length=200)
    image: Optional[str] = None
    capacity: int = Field(ge=1, le=1000)


class EventCreate(EventBase):
    tags: List[TagText] = Field(default_factory=list, max_length=5)

    @field_validator("image")
    @classmethod
    def validate_image(cls, value):
        return _check_image(value)


class EventUpdate(BaseModel):
    """Partial update: only the fields the client sent are applied."""

    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, min_length=10, max_length=1000)
    date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    location: Optional[str] = Field(None, min_length=3, max_length=200)
    image: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1, le=1000)
    tags: Optional[List[TagText]] = Field(None, max_length=5)

    @field_validator("image")
    @classmethod
    def validate_image(cls, value):
        return _check_image(value)

    def changes(self) -> dict:
        """Fields explicitly supplied, without tags.

        An empty or null ``image`` is kept so it can clear the stored value;
        other null fields count as omitted.
        """
        supplied = self.model_dump(exclude_unset=True, exclude={"tags"})
        changes = {k: v for k, v in supplied.items() if v is not None or k == "image"}
        if "image" in changes and not changes["image"]:
            changes["image"] = None
        return changes


class TagsUpdate(BaseModel):
    tags: List[TagText] = Field(max_length=5)


class Event(EventBase):
    id: str
    creatorId: str
    createdAt: datetime
    updatedAt: datetime


class Attendance(BaseModel):
    eventId: str
    userId: str
    status: str = "joined"  # 'joined', 'cancelled' ('pending' reserved)
    joinedAt: datetime


class EventFilters(BaseModel):
    search: Optional[str] = None
    tag: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None


class Pagination(BaseModel):
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)


class EventSummary(EventBase):
    id: str
    attendeeCount: int
    creatorName: str
    creatorId: str
    tags: List[str]
    createdAt: datetime
    updatedAt: datetime


class CreatorOut(BaseModel):
    id: str
    name: str
    email: str


class AttendeeOut(BaseModel):
    id: str
    name: str
    avatar: Optional[str] = None
    joinedAt: datetime


class EventDetail(EventSummary):
    creator: CreatorOut
    isAttending: bool
    attendeesList: List[AttendeeOut]
