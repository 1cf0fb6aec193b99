from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from eventhub.database.port import StoragePort
from eventhub.dependencies import get_principal, get_storage, require_principal
from eventhub.schemas.event import (
    Event,
    EventCreate,
    EventDetail,
    EventFilters,
    EventUpdate,
    Pagination,
    TagsUpdate,
)
from eventhub.schemas.user import Principal
from eventhub.services.attendance_registry import AttendanceRegistry
from eventhub.services.event_store import EventStore
from eventhub.services.query_engine import QueryEngine
from eventhub.services.tag_index import TagIndex

router = APIRouter(prefix="/events", tags=["events"])


def get_attendance_registry(storage: StoragePort = Depends(get_storage)):
    """Dependency to get AttendanceRegistry instance"""
    return AttendanceRegistry(storage)


def get_event_store(
    storage: StoragePort = Depends(get_storage),
    attendance: AttendanceRegistry = Depends(get_attendance_registry),
):
    """Dependency to get EventStore instance"""
    return EventStore(storage, TagIndex(storage), attendance)


def get_query_engine(storage: StoragePort = Depends(get_storage)):
    """Dependency to get QueryEngine instance"""
    return QueryEngine(storage)


@router.get("/", response_model=Dict[str, Any])
def list_events(
    search: Optional[str] = Query(None, description="Match name, description or location"),
    tag: Optional[str] = Query(None, description="Exact tag"),
    location: Optional[str] = Query(None, description="Location substring"),
    date: Optional[str] = Query(None, description="Exact date (YYYY-MM-DD)"),
    limit: int = Query(50, ge=1, le=100, description="Number of results per page"),
    offset: int = Query(0, ge=0, description="Number of results to skip"),
    query_engine: QueryEngine = Depends(get_query_engine),
):
    """List events ordered by date and time"""
    events = query_engine.list_events(
        EventFilters(search=search, tag=tag, location=location, date=date),
        Pagination(limit=limit, offset=offset),
    )
    return {
        "events": [event.model_dump(mode="json") for event in events],
        "pagination": {"limit": limit, "offset": offset, "total": len(events)},
    }


@router.get("/{event_id}", response_model=EventDetail)
def get_event(
    event_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    query_engine: QueryEngine = Depends(get_query_engine),
):
    return query_engine.get_event(event_id, principal.userId if principal else None)


@router.post("/", response_model=Event, status_code=201)
def create_event(
    event_data: EventCreate,
    principal: Principal = Depends(require_principal),
    event_store: EventStore = Depends(get_event_store),
):
    """Create a new event; the creator joins it automatically"""
    return event_store.create_event(event_data, principal.userId)


@router.put("/{event_id}", response_model=Event)
def update_event(
    event_id: str,
    patch: EventUpdate,
    principal: Principal = Depends(require_principal),
    event_store: EventStore = Depends(get_event_store),
):
    return event_store.update_event(event_id, patch, principal.userId)


@router.put("/{event_id}/tags", response_model=List[str])
def replace_tags(
    event_id: str,
    body: TagsUpdate,
    principal: Principal = Depends(require_principal),
    event_store: EventStore = Depends(get_event_store),
):
    """Replace the whole tag set; returns the normalized tags"""
    return event_store.replace_tags(event_id, body.tags, principal.userId)


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    principal: Principal = Depends(require_principal),
    event_store: EventStore = Depends(get_event_store),
):
    event_store.delete_event(event_id, principal.userId)
    return {"message": "Event deleted successfully"}


@router.post("/{event_id}/join")
def join_event(
    event_id: str,
    principal: Principal = Depends(require_principal),
    attendance: AttendanceRegistry = Depends(get_attendance_registry),
):
    attendance.join(event_id, principal.userId)
    return {"message": "Successfully joined event"}


@router.delete("/{event_id}/leave")
def leave_event(
    event_id: str,
    principal: Principal = Depends(require_principal),
    attendance: AttendanceRegistry = Depends(get_attendance_registry),
):
    attendance.leave(event_id, principal.userId)
    return {"message": "Successfully left event"}
