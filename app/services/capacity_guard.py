import logging
from typing import Any, Dict, Optional

from app.database.dynamodb import DEFAULT_TABLE_NAME
from app.schemas.event import EventOut
from app.services.errors import (
    AlreadyRegistered,
    AtCapacity,
    EventifyError,
    EventNotFound,
    NotRegistered,
    TransientConflict,
)
from app.services.event_store import (
    conditional_write,
    event_key,
    load_event_item,
    to_event_out,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class CapacityGuard:
    """
    Admits and removes event attendees without exceeding capacity.

    Each admit/revoke is one conditional UpdateItem on the event item. The
    condition carries the whole decision (event exists, membership, free
    spot), so DynamoDB's per-item atomicity serializes concurrent callers
    across any number of processes. Nothing here locks, waits or retries.

    When the condition fails, a consistent read explains why. That read may
    already be stale. It only picks the error message and never changes the
    outcome, which was decided by the update.
    """

    def __init__(self, dynamodb_resource, table_name=DEFAULT_TABLE_NAME):
        self.dynamodb = dynamodb_resource
        self.table = dynamodb_resource.Table(table_name)

    def admit(self, event_id: str, user_id: str) -> EventOut:
        """RSVP user_id to the event, returning the updated event"""
        response = conditional_write(
            "admit",
            self.table.update_item,
            Key=event_key(event_id),
            UpdateExpression=(
                "ADD #attendees :user_set "
                "SET #count = #count + :one, #version = #version + :one, "
                "#updatedAt = :now"
            ),
            ConditionExpression=(
                "attribute_exists(PK) AND NOT contains(#attendees, :user_id) "
                "AND #count < #capacity"
            ),
            ExpressionAttributeNames={
                "#attendees": "attendees",
                "#count": "attendeeCount",
                "#capacity": "capacity",
                "#version": "version",
                "#updatedAt": "updatedAt",
            },
            ExpressionAttributeValues={
                ":user_set": {user_id},
                ":user_id": user_id,
                ":one": 1,
                ":now": utc_now_iso(),
            },
            ReturnValues="ALL_NEW",
        )

        if response is None:
            rejection = self.diagnose_admit(event_id, user_id)
            logger.info(
                "RSVP rejected: event=%s user=%s reason=%s",
                event_id,
                user_id,
                rejection.reason,
            )
            raise rejection

        event = to_event_out(response["Attributes"])
        logger.info(
            "RSVP admitted: event=%s user=%s attendees=%d/%d",
            event_id,
            user_id,
            event.attendeeCount,
            event.capacity,
        )
        return event

    def revoke(self, event_id: str, user_id: str) -> EventOut:
        """Cancel user_id's RSVP, returning the updated event"""
        response = conditional_write(
            "revoke",
            self.table.update_item,
            Key=event_key(event_id),
            UpdateExpression=(
                "DELETE #attendees :user_set "
                "SET #count = #count - :one, #version = #version + :one, "
                "#updatedAt = :now"
            ),
            ConditionExpression=(
                "attribute_exists(PK) AND contains(#attendees, :user_id)"
            ),
            ExpressionAttributeNames={
                "#attendees": "attendees",
                "#count": "attendeeCount",
                "#version": "version",
                "#updatedAt": "updatedAt",
            },
            ExpressionAttributeValues={
                ":user_set": {user_id},
                ":user_id": user_id,
                ":one": 1,
                ":now": utc_now_iso(),
            },
            ReturnValues="ALL_NEW",
        )

        if response is None:
            rejection = self.diagnose_revoke(event_id)
            logger.info(
                "RSVP cancel rejected: event=%s user=%s reason=%s",
                event_id,
                user_id,
                rejection.reason,
            )
            raise rejection

        logger.info("RSVP cancelled: event=%s user=%s", event_id, user_id)
        return to_event_out(response["Attributes"])

    def diagnose_admit(self, event_id: str, user_id: str) -> EventifyError:
        item = load_event_item(self.table, event_id)
        return classify_admit_rejection(item, user_id)

    def diagnose_revoke(self, event_id: str) -> EventifyError:
        item = load_event_item(self.table, event_id)
        if item is None:
            return EventNotFound()
        return NotRegistered()


def classify_admit_rejection(item: Optional[Dict[str, Any]], user_id: str):
    """Pick the most specific reason an admit condition could have failed"""
    if item is None:
        return EventNotFound()
    if user_id in (item.get("attendees") or set()):
        return AlreadyRegistered()
    if int(item.get("attendeeCount", 0)) >= int(item["capacity"]):
        return AtCapacity()
    # The state changed between the update and the read
    return TransientConflict()
