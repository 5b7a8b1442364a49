from .event import (
    EventBase,
    EventCategory,
    EventCreate,
    EventDeleteResponse,
    EventOut,
    EventUpdate,
    RsvpResponse,
)

__all__ = [
    "EventBase",
    "EventCategory",
    "EventCreate",
    "EventDeleteResponse",
    "EventOut",
    "EventUpdate",
    "RsvpResponse",
]
