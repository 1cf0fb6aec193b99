from typing import List

from fastapi import APIRouter, Depends

from eventhub.database.port import StoragePort
from eventhub.dependencies import get_storage
from eventhub.schemas.event import EventSummary
from eventhub.schemas.user import ActivityOut, UserCreate, UserOut, UserProfile, UserStats
from eventhub.services.query_engine import QueryEngine
from eventhub.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(storage: StoragePort = Depends(get_storage)):
    """Dependency to get UserService instance"""
    return UserService(storage)


def get_query_engine(storage: StoragePort = Depends(get_storage)):
    return QueryEngine(storage)


@router.post("/", response_model=UserOut, status_code=201)
def create_user(user_data: UserCreate, user_service: UserService = Depends(get_user_service)):
    """Create a new user"""
    return user_service.create_user(user_data)


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: str, user_service: UserService = Depends(get_user_service)):
    return user_service.get_user(user_id)


@router.get("/{user_id}/events/created", response_model=List[EventSummary])
def created_events(user_id: str, query_engine: QueryEngine = Depends(get_query_engine)):
    """Events created by the user, newest first"""
    return query_engine.created_by(user_id)


@router.get("/{user_id}/events/joined", response_model=List[EventSummary])
def joined_events(user_id: str, query_engine: QueryEngine = Depends(get_query_engine)):
    """Events the user attends, most recently joined first"""
    return query_engine.joined_by(user_id)


@router.get("/{user_id}/stats", response_model=UserStats)
def user_stats(user_id: str, query_engine: QueryEngine = Depends(get_query_engine)):
    return query_engine.user_stats(user_id)


@router.get("/{user_id}/activity", response_model=List[ActivityOut])
def recent_activity(user_id: str, query_engine: QueryEngine = Depends(get_query_engine)):
    """Up to 10 created/joined entries, newest first"""
    return query_engine.recent_activity(user_id)


@router.get("/{user_id}/profile", response_model=UserProfile)
def user_profile(user_id: str, query_engine: QueryEngine = Depends(get_query_engine)):
    return query_engine.profile(user_id)
