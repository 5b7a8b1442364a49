import datetime as dt
import threading

import boto3
import pytest
from moto import mock_aws

from app.schemas.event import EventCreate
from app.services.capacity_guard import CapacityGuard
from app.services.event_service import EventService
from scripts.init_dynamodb import create_table_if_not_exists

TEST_TABLE_NAME = "Eventify_Test"
TEST_REGION = "us-east-1"
OWNER_ID = "owner-user-id"


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real AWS account"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)


@pytest.fixture
def dynamodb_resource(aws_credentials):
    """In-memory DynamoDB with a fresh events table for each test"""
    with mock_aws():
        resource = boto3.resource("dynamodb", region_name=TEST_REGION)
        create_table_if_not_exists(TEST_TABLE_NAME, resource)
        yield resource


@pytest.fixture
def event_service(dynamodb_resource):
    return EventService(dynamodb_resource, TEST_TABLE_NAME)


@pytest.fixture
def guard(dynamodb_resource):
    return CapacityGuard(dynamodb_resource, TEST_TABLE_NAME)


@pytest.fixture
def make_event(event_service):
    """Factory creating upcoming events owned by OWNER_ID"""

    def _make_event(capacity=2, creator=OWNER_ID, days_ahead=7, **overrides):
        data = {
            "title": "Tech Meetup",
            "description": "A great tech meetup",
            "date": dt.date.today() + dt.timedelta(days=days_ahead),
            "time": "18:00",
            "location": "Tech Hub",
            "capacity": capacity,
        }
        data.update(overrides)
        return event_service.create_event(EventCreate(**data), creator)

    return _make_event


class SerializedTable:
    """
    Table proxy that applies one UpdateItem at a time.

    DynamoDB evaluates a conditional update atomically per item. moto's
    in-memory backend does not, so concurrency tests restore that guarantee
    here and exercise everything else (condition evaluation, diagnostics,
    thread interleaving) unchanged.
    """

    def __init__(self, table, lock):
        self._table = table
        self._lock = lock

    def update_item(self, **kwargs):
        with self._lock:
            return self._table.update_item(**kwargs)

    def __getattr__(self, name):
        return getattr(self._table, name)


@pytest.fixture
def guard_factory(dynamodb_resource):
    """Builds one guard per worker thread, each with its own boto3 session"""
    lock = threading.Lock()

    def _guard_factory():
        session = boto3.session.Session(region_name=TEST_REGION)
        worker_guard = CapacityGuard(
            session.resource("dynamodb"), TEST_TABLE_NAME
        )
        worker_guard.table = SerializedTable(worker_guard.table, lock)
        return worker_guard

    return _guard_factory
