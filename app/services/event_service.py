import base64
import datetime as dt
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from app.database.dynamodb import DEFAULT_TABLE_NAME
from app.schemas.event import EventCreate, EventOut, EventUpdate
from app.services.errors import (
    CapacityFloorViolation,
    EventNotFound,
    NotEventOwner,
    StoreUnavailable,
    VersionConflict,
)
from app.services.event_store import (
    TIMELINE_PK,
    conditional_write,
    creator_pk,
    date_sort_key,
    event_key,
    load_event_item,
    to_event_out,
    utc_now_iso,
)
from app.services.image_service import ImageService

logger = logging.getLogger(__name__)

# Fields the creator may edit; attendees and counters belong to CapacityGuard
EDITABLE_FIELDS = [
    "title",
    "description",
    "date",
    "time",
    "location",
    "capacity",
    "category",
    "image",
]

TIMELINE_INDEX = "GSI_EventsByDate"
TIMELINE_KEY_ATTRIBUTES = ["PK", "SK", "GSI_EventsByDate_PK", "GSI_EventsByDate_SK"]


def timeline_key(item: Dict[str, Any]) -> Dict[str, str]:
    return {name: item[name] for name in TIMELINE_KEY_ATTRIBUTES}


def decode_pagination_token(token: Optional[str]) -> Optional[Dict[str, str]]:
    """Start key encoded in a pagination token; None restarts from the beginning"""
    if not token:
        return None

    try:
        key = json.loads(base64.b64decode(token).decode())
    except (ValueError, json.JSONDecodeError):
        return None

    if not isinstance(key, dict) or set(key) != set(TIMELINE_KEY_ATTRIBUTES):
        return None
    if key["GSI_EventsByDate_PK"] != TIMELINE_PK:
        return None
    if not all(isinstance(value, str) for value in key.values()):
        return None
    return key


class EventService:
    def __init__(
        self,
        dynamodb_resource,
        table_name=DEFAULT_TABLE_NAME,
        image_service: Optional[ImageService] = None,
    ):
        self.dynamodb = dynamodb_resource
        self.table = dynamodb_resource.Table(table_name)
        self.image_service = image_service or ImageService(None, None)

    def create_event(self, event_data: EventCreate, creator_id: str) -> EventOut:
        """Create an event owned by creator_id with no attendees"""
        event_id = str(uuid.uuid4())
        now = utc_now_iso()
        date_iso = event_data.date.isoformat()

        item = {
            **event_key(event_id),
            "id": event_id,
            "title": event_data.title,
            "description": event_data.description,
            "date": date_iso,
            "time": event_data.time,
            "location": event_data.location,
            "category": event_data.category.value,
            "image": event_data.image,
            "capacity": event_data.capacity,
            "creator": creator_id,
            "attendeeCount": 0,
            "version": 0,
            "createdAt": now,
            "updatedAt": now,
        }

        # GSI attributes for the timeline and the creator dashboard
        item["GSI_EventsByDate_PK"] = TIMELINE_PK
        item["GSI_EventsByDate_SK"] = date_sort_key(date_iso, event_id)
        item["GSI_EventsByCreator_PK"] = creator_pk(creator_id)
        item["GSI_EventsByCreator_SK"] = date_sort_key(date_iso, event_id)

        response = conditional_write(
            "create_event",
            self.table.put_item,
            Item=item,
            ConditionExpression="attribute_not_exists(PK)",
        )
        if response is None:
            # uuid4 collision; nothing was written
            raise StoreUnavailable("Failed to allocate an event id")

        logger.info("Event created: event=%s creator=%s", event_id, creator_id)
        return to_event_out(item)

    def get_event(self, event_id: str) -> EventOut:
        item = load_event_item(self.table, event_id)
        if item is None:
            raise EventNotFound()
        return to_event_out(item)

    def update_event(
        self, event_id: str, changes: EventUpdate, user_id: str
    ) -> EventOut:
        """
        Apply creator edits with optimistic concurrency.

        The write only succeeds if the item still has the version that was
        read and the new capacity still covers the attendees. A concurrent edit
        surfaces as VersionConflict; the caller re-fetches and retries.
        """
        item = load_event_item(self.table, event_id)
        if item is None:
            raise EventNotFound()
        if item["creator"] != user_id:
            raise NotEventOwner("Not authorized to update this event")

        read_version = int(item.get("version", 0))
        if changes.version is not None and changes.version != read_version:
            raise VersionConflict()

        updates = changes.model_dump(exclude_unset=True, exclude={"version"})
        updates = {
            k: v for k, v in updates.items() if k in EDITABLE_FIELDS and v is not None
        }

        attendee_count = int(item.get("attendeeCount", 0))
        capacity = updates.get("capacity", int(item["capacity"]))
        if capacity < attendee_count:
            raise CapacityFloorViolation(attendee_count)

        values: Dict[str, Any] = {
            ":expected_version": read_version,
            ":one": 1,
            ":capacity_floor": capacity,
            ":now": utc_now_iso(),
        }
        names = {
            "#version": "version",
            "#count": "attendeeCount",
            "#updatedAt": "updatedAt",
        }
        assignments = ["#version = #version + :one", "#updatedAt = :now"]

        for field, value in updates.items():
            if isinstance(value, dt.date):
                value = value.isoformat()
            elif field == "category":
                value = value.value
            names[f"#{field}"] = field
            values[f":{field}"] = value
            assignments.append(f"#{field} = :{field}")

        if "date" in updates:
            sort_key = date_sort_key(values[":date"], event_id)
            values[":date_sk"] = sort_key
            assignments.append("GSI_EventsByDate_SK = :date_sk")
            assignments.append("GSI_EventsByCreator_SK = :date_sk")

        response = conditional_write(
            "update_event",
            self.table.update_item,
            Key=event_key(event_id),
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression=(
                "attribute_exists(PK) AND #version = :expected_version "
                "AND #count <= :capacity_floor"
            ),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )

        if response is None:
            raise self._diagnose_update(event_id, read_version)

        logger.info(
            "Event updated: event=%s version=%d fields=%s",
            event_id,
            read_version + 1,
            sorted(updates),
        )

        old_image = item.get("image")
        if "image" in updates and old_image and old_image != updates["image"]:
            self.image_service.delete_image(old_image)

        return to_event_out(response["Attributes"])

    def _diagnose_update(self, event_id: str, read_version: int):
        current = load_event_item(self.table, event_id)
        if current is None:
            return EventNotFound()
        if int(current.get("version", 0)) != read_version:
            logger.info("Lost update detected: event=%s", event_id)
            return VersionConflict()
        return CapacityFloorViolation(int(current.get("attendeeCount", 0)))

    def delete_event(self, event_id: str, user_id: str) -> None:
        """Delete an event owned by user_id and release its image"""
        item = load_event_item(self.table, event_id)
        if item is None:
            raise EventNotFound()
        if item["creator"] != user_id:
            raise NotEventOwner("Not authorized to delete this event")

        response = conditional_write(
            "delete_event",
            self.table.delete_item,
            Key=event_key(event_id),
            ConditionExpression="attribute_exists(PK)",
        )
        if response is None:
            raise EventNotFound()

        logger.info("Event deleted: event=%s", event_id)

        if item.get("image"):
            self.image_service.delete_image(item["image"])

    def list_events(
        self,
        category: Optional[str] = None,
        date_from: Optional[dt.date] = None,
        date_to: Optional[dt.date] = None,
        upcoming: bool = True,
        search: Optional[str] = None,
        limit: int = 12,
        last_evaluated_key: Optional[str] = None,
    ) -> Tuple[List[EventOut], Optional[str]]:
        """
        List events in date order from the timeline index
        Returns: (events, next_pagination_token)
        """
        lower = date_from
        if upcoming:
            today = dt.date.today()
            lower = max(lower, today) if lower else today

        key_condition = Key("GSI_EventsByDate_PK").eq(TIMELINE_PK)
        # "~" sorts after every event id character, closing the upper bound
        if lower and date_to:
            key_condition &= Key("GSI_EventsByDate_SK").between(
                f"DATE#{lower.isoformat()}", f"DATE#{date_to.isoformat()}#~"
            )
        elif lower:
            key_condition &= Key("GSI_EventsByDate_SK").gte(f"DATE#{lower.isoformat()}")
        elif date_to:
            key_condition &= Key("GSI_EventsByDate_SK").lte(
                f"DATE#{date_to.isoformat()}#~"
            )

        filters: Dict[str, Any] = {}
        if category and category != "all":
            filters["category"] = category
        if search:
            filters["search"] = search.lower()

        return self._query_with_pagination(
            key_condition, filters, limit, last_evaluated_key
        )

    def get_created_events(self, user_id: str) -> List[EventOut]:
        items = self._query_all(
            IndexName="GSI_EventsByCreator",
            KeyConditionExpression=Key("GSI_EventsByCreator_PK").eq(
                creator_pk(user_id)
            ),
        )
        return [to_event_out(item) for item in items]

    def get_attending_events(self, user_id: str) -> List[EventOut]:
        items = []
        scan_params = {
            "FilterExpression": Attr("SK").eq("DETAIL")
            & Attr("attendees").contains(user_id)
        }

        try:
            while True:
                response = self.table.scan(**scan_params)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                scan_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to scan attending events for %s: %s", user_id, e)
            raise StoreUnavailable() from e

        events = [to_event_out(item) for item in items]
        events.sort(key=lambda event: (event.date, event.id))
        return events

    def _query_all(self, **query_params) -> List[Dict[str, Any]]:
        items = []
        try:
            while True:
                response = self.table.query(**query_params)
                items.extend(response.get("Items", []))
                if "LastEvaluatedKey" not in response:
                    break
                query_params["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to query %s: %s", query_params.get("IndexName"), e)
            raise StoreUnavailable() from e
        return items

    def _query_with_pagination(
        self,
        key_condition,
        filters: Dict[str, Any],
        limit: int,
        last_evaluated_key: Optional[str],
    ) -> Tuple[List[EventOut], Optional[str]]:
        """
        Query the timeline index page by page, filtering in memory until
        limit items are collected
        """
        events = []
        exclusive_start_key = decode_pagination_token(last_evaluated_key)
        has_more = False

        while len(events) < limit:
            # Get extra to account for filtering
            needed = limit - len(events)
            query_limit = min(needed * 3, 100) if filters else needed

            response = self._query_timeline_page(
                key_condition, query_limit, exclusive_start_key
            )
            items = response.get("Items", [])
            exclusive_start_key = response.get("LastEvaluatedKey")

            for position, item in enumerate(items):
                if not self._matches_all_filters(item, filters):
                    continue
                events.append(to_event_out(item))

                if len(events) >= limit:
                    # Resume right after the last returned item
                    rest = items[position + 1 :]
                    has_more = any(
                        self._matches_all_filters(i, filters) for i in rest
                    ) or self._has_more_matches(
                        key_condition, filters, exclusive_start_key
                    )
                    exclusive_start_key = timeline_key(item)
                    break

            if not exclusive_start_key:
                break

        next_token = None
        if has_more:
            next_token = base64.b64encode(
                json.dumps(exclusive_start_key).encode()
            ).decode()

        return events, next_token

    def _has_more_matches(self, key_condition, filters, exclusive_start_key):
        """Whether any matching item exists after exclusive_start_key"""
        while exclusive_start_key:
            response = self._query_timeline_page(
                key_condition, 100, exclusive_start_key
            )
            if any(
                self._matches_all_filters(item, filters)
                for item in response.get("Items", [])
            ):
                return True
            exclusive_start_key = response.get("LastEvaluatedKey")
        return False

    def _query_timeline_page(self, key_condition, limit, exclusive_start_key):
        query_params = {
            "IndexName": TIMELINE_INDEX,
            "KeyConditionExpression": key_condition,
            "Limit": limit,
        }

        if exclusive_start_key:
            query_params["ExclusiveStartKey"] = exclusive_start_key

        try:
            return self.table.query(**query_params)
        except (ClientError, BotoCoreError) as e:
            logger.error("Failed to query %s: %s", TIMELINE_INDEX, e)
            raise StoreUnavailable() from e

    def _matches_all_filters(self, item: Dict[str, Any], filters: Dict[str, Any]):
        if "category" in filters and item.get("category") != filters["category"]:
            return False

        if "search" in filters:
            text = f"{item.get('title', '')} {item.get('description', '')}".lower()
            if filters["search"] not in text:
                return False

        return True
