import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class EventCategory(str, Enum):
    conference = "conference"
    workshop = "workshop"
    meetup = "meetup"
    concert = "concert"
    sports = "sports"
    party = "party"
    other = "other"


class EventBase(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=2000)
    date: dt.date
    time: str = Field(min_length=1)
    location: str = Field(min_length=1, max_length=200)
    capacity: int = Field(ge=1)
    category: EventCategory = EventCategory.other
    image: str = ""


class EventCreate(EventBase):
    pass


class EventUpdate(BaseModel):
    """Partial update of event metadata; attendees are never editable here"""

    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    date: Optional[dt.date] = None
    time: Optional[str] = Field(None, min_length=1)
    location: Optional[str] = Field(None, min_length=1, max_length=200)
    capacity: Optional[int] = Field(None, ge=1)
    category: Optional[EventCategory] = None
    image: Optional[str] = None
    # Version the client last read; a mismatch rejects the edit
    version: Optional[int] = Field(None, ge=0)


class EventOut(EventBase):
    id: str
    creator: str
    attendees: List[str] = []
    attendeeCount: int
    availableSpots: int
    version: int
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class RsvpResponse(BaseModel):
    message: str
    event: EventOut


class EventDeleteResponse(BaseModel):
    message: str
