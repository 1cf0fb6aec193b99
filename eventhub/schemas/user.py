from datetime import datetime

from typing import List, Literal

from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    avatar: str | None = None


class UserCreate(UserBase):
    # hashed by the external credential service before it reaches us
    passwordHash: str


class UserOut(UserBase):
    id: str
    createdAt: datetime


class User(UserOut):
    passwordHash: str


class UserStats(BaseModel):
    eventsCreated: int
    eventsJoined: int
    connections: int


class ActivityOut(BaseModel):
    type: Literal["created", "joined"]
    eventId: str
    eventName: str
    timestamp: datetime


class UserProfile(BaseModel):
    user: UserOut
    stats: UserStats
    recentActivity: List[ActivityOut]


class Principal(BaseModel):
    """Authenticated caller as supplied by the auth gateway."""

    userId: str
    name: str
    email: str
