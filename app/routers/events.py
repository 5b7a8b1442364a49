import datetime as dt
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from app.database.dynamodb import get_db_connection, get_s3_client, get_table_name
from app.schemas.event import (
    EventCreate,
    EventDeleteResponse,
    EventOut,
    EventUpdate,
    RsvpResponse,
)
from app.services.capacity_guard import CapacityGuard
from app.services.errors import EventifyError
from app.services.event_service import EventService
from app.services.image_service import ImageService

router = APIRouter(prefix="/events", tags=["events"])


def get_event_service():
    """Dependency to get EventService instance"""
    db = get_db_connection()
    images = ImageService(get_s3_client(), os.getenv("EVENTIFY_IMAGE_BUCKET"))
    return EventService(db, get_table_name(), image_service=images)


def get_capacity_guard():
    """Dependency to get CapacityGuard instance"""
    db = get_db_connection()
    return CapacityGuard(db, get_table_name())


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity of the caller, already authenticated by the upstream gateway"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authorized, no user")
    return x_user_id


def to_http_error(error: EventifyError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.detail)


@router.get("/", response_model=Dict[str, Any])
def list_events(
    category: Optional[str] = Query(None, description="Filter by category"),
    dateFrom: Optional[dt.date] = Query(None, description="Events on or after"),
    dateTo: Optional[dt.date] = Query(None, description="Events on or before"),
    upcoming: bool = Query(True, description="Only events from today on"),
    search: Optional[str] = Query(None, description="Search title and description"),
    limit: int = Query(12, ge=1, le=100, description="Number of results per page"),
    nextToken: Optional[str] = Query(
        None, description="Pagination token from previous response"
    ),
    event_service: EventService = Depends(get_event_service),
):
    """List events in date order with filtering and pagination"""
    try:
        events, next_pagination_token = event_service.list_events(
            category=category,
            date_from=dateFrom,
            date_to=dateTo,
            upcoming=upcoming,
            search=search,
            limit=limit,
            last_evaluated_key=nextToken,
        )
    except EventifyError as e:
        raise to_http_error(e)

    response = {
        "events": [event.model_dump(mode="json") for event in events],
        "count": len(events),
        "limit": limit,
        "hasMore": next_pagination_token is not None,
    }

    if next_pagination_token:
        response["nextToken"] = next_pagination_token

    return response


@router.get("/user/created", response_model=List[EventOut])
def get_user_created_events(
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
):
    """Events created by the current user"""
    try:
        return event_service.get_created_events(user_id)
    except EventifyError as e:
        raise to_http_error(e)


@router.get("/user/attending", response_model=List[EventOut])
def get_user_attending_events(
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
):
    """Events the current user has RSVPed to"""
    try:
        return event_service.get_attending_events(user_id)
    except EventifyError as e:
        raise to_http_error(e)


@router.get("/{event_id}", response_model=EventOut)
def get_event(event_id: str, event_service: EventService = Depends(get_event_service)):
    try:
        return event_service.get_event(event_id)
    except EventifyError as e:
        raise to_http_error(e)


@router.post("/", response_model=EventOut, status_code=201)
def create_event(
    event_data: EventCreate,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
):
    """Create a new event owned by the current user"""
    try:
        return event_service.create_event(event_data, user_id)
    except EventifyError as e:
        raise to_http_error(e)


@router.put("/{event_id}", response_model=EventOut)
def update_event(
    event_id: str,
    changes: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
):
    """Update event metadata (creator only)"""
    try:
        return event_service.update_event(event_id, changes, user_id)
    except EventifyError as e:
        raise to_http_error(e)


@router.delete("/{event_id}", response_model=EventDeleteResponse)
def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    event_service: EventService = Depends(get_event_service),
):
    """Delete an event and release its image (creator only)"""
    try:
        event_service.delete_event(event_id, user_id)
    except EventifyError as e:
        raise to_http_error(e)
    return EventDeleteResponse(message="Event deleted successfully")


@router.post("/{event_id}/rsvp", response_model=RsvpResponse)
def rsvp_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    guard: CapacityGuard = Depends(get_capacity_guard),
):
    """RSVP the current user to an event"""
    try:
        event = guard.admit(event_id, user_id)
    except EventifyError as e:
        raise to_http_error(e)
    return RsvpResponse(message="Successfully RSVPed to event", event=event)


@router.delete("/{event_id}/rsvp", response_model=RsvpResponse)
def cancel_rsvp(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    guard: CapacityGuard = Depends(get_capacity_guard),
):
    """Cancel the current user's RSVP"""
    try:
        event = guard.revoke(event_id, user_id)
    except EventifyError as e:
        raise to_http_error(e)
    return RsvpResponse(message="RSVP cancelled successfully", event=event)
