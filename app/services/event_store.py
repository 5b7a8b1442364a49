"""
Helpers shared by everything that touches event items in DynamoDB.

Every event lives in one item (PK=EVENT#<id>, SK=DETAIL). Writes that must
not race are expressed as conditional writes; DynamoDB evaluates the
condition and applies the update as one step on that item.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from app.schemas.event import EventOut
from app.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

EVENT_DETAIL_SK = "DETAIL"
TIMELINE_PK = "EVENT_TIMELINE"

INTERNAL_FIELDS = [
    "PK",
    "SK",
    "GSI_EventsByDate_PK",
    "GSI_EventsByDate_SK",
    "GSI_EventsByCreator_PK",
    "GSI_EventsByCreator_SK",
]


def event_key(event_id: str) -> Dict[str, str]:
    return {"PK": f"EVENT#{event_id}", "SK": EVENT_DETAIL_SK}


def creator_pk(creator_id: str) -> str:
    return f"CREATOR#{creator_id}"


def date_sort_key(date_iso: str, event_id: str) -> str:
    return f"DATE#{date_iso}#EVENT#{event_id}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_event_out(item: Dict[str, Any]) -> EventOut:
    """Convert a stored event item to the API model, deriving available spots"""
    data = {k: v for k, v in item.items() if k not in INTERNAL_FIELDS}

    capacity = int(data["capacity"])
    attendee_count = int(data.get("attendeeCount", 0))

    data["capacity"] = capacity
    data["attendeeCount"] = attendee_count
    data["version"] = int(data.get("version", 0))
    # String sets come back as Python sets and are dropped entirely when empty
    data["attendees"] = sorted(data.get("attendees") or [])
    data["availableSpots"] = capacity - attendee_count

    return EventOut(**data)


def load_event_item(table, event_id: str) -> Optional[Dict[str, Any]]:
    """Strongly consistent point lookup; None when the event does not exist"""
    try:
        response = table.get_item(Key=event_key(event_id), ConsistentRead=True)
    except (ClientError, BotoCoreError) as e:
        logger.error("Failed to read event %s: %s", event_id, e)
        raise StoreUnavailable() from e
    return response.get("Item")


def conditional_write(
    operation: str, write: Callable[..., Dict[str, Any]], **kwargs
) -> Optional[Dict[str, Any]]:
    """
    Run a conditional DynamoDB write.

    Returns the raw response, or None when the condition did not hold.
    Any other failure (throttling, timeouts, connection errors) is raised as
    StoreUnavailable so it is never mistaken for a rejected condition.
    """
    try:
        return write(**kwargs)
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return None
        logger.error("DynamoDB %s failed: %s", operation, e)
        raise StoreUnavailable() from e
    except BotoCoreError as e:
        logger.error("DynamoDB %s failed: %s", operation, e)
        raise StoreUnavailable() from e
