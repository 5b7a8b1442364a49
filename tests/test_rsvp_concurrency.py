from concurrent.futures import ThreadPoolExecutor

import pytest

from app.services.errors import RsvpRejected
from app.services.event_store import event_key
from tests.conftest import TEST_TABLE_NAME


def attempt(worker_guard, action, event_id, user_id):
    """Run one admit/revoke and report its outcome by name"""
    try:
        getattr(worker_guard, action)(event_id, user_id)
    except RsvpRejected as e:
        return e.reason
    return "ok"


def run_concurrently(guard_factory, calls):
    guards = [guard_factory() for _ in calls]
    with ThreadPoolExecutor(max_workers=16) as pool:
        futures = [
            pool.submit(attempt, worker_guard, *call)
            for worker_guard, call in zip(guards, calls)
        ]
        return [future.result() for future in futures]


def stored_item(dynamodb_resource, event_id):
    table = dynamodb_resource.Table(TEST_TABLE_NAME)
    return table.get_item(Key=event_key(event_id), ConsistentRead=True)["Item"]


@pytest.mark.parametrize("capacity,extra", [(1, 1), (5, 3), (10, 20)])
def test_exactly_capacity_winners(
    guard_factory, make_event, dynamodb_resource, capacity, extra
):
    """Test that N + k simultaneous RSVPs admit exactly N users"""
    event = make_event(capacity=capacity)
    users = [f"user-{i}" for i in range(capacity + extra)]

    outcomes = run_concurrently(
        guard_factory, [("admit", event.id, user) for user in users]
    )

    assert outcomes.count("ok") == capacity
    assert outcomes.count("AtCapacity") == extra

    item = stored_item(dynamodb_resource, event.id)
    admitted = {user for user, outcome in zip(users, outcomes) if outcome == "ok"}
    assert item["attendees"] == admitted
    assert item["attendeeCount"] == capacity
    assert item["version"] == capacity


def test_duplicate_concurrent_admits_register_once(
    guard_factory, make_event, dynamodb_resource
):
    """Test that one user racing against themselves is admitted once"""
    event = make_event(capacity=3)

    outcomes = run_concurrently(
        guard_factory, [("admit", event.id, "same-user")] * 12
    )

    assert outcomes.count("ok") == 1
    assert outcomes.count("AlreadyRegistered") == 11

    item = stored_item(dynamodb_resource, event.id)
    assert item["attendees"] == {"same-user"}
    assert item["attendeeCount"] == 1


def test_mixed_admits_and_revokes_keep_invariants(
    guard_factory, guard, make_event, dynamodb_resource
):
    """Test capacity and uniqueness under interleaved admits and revokes"""
    capacity = 4
    event = make_event(capacity=capacity)
    initial = ["seed-0", "seed-1", "seed-2", "seed-3"]
    for user in initial:
        guard.admit(event.id, user)

    calls = [("revoke", event.id, user) for user in initial]
    calls += [("admit", event.id, f"new-{i}") for i in range(12)]
    calls += [("admit", event.id, "seed-0")] * 3

    outcomes = run_concurrently(guard_factory, calls)

    item = stored_item(dynamodb_resource, event.id)
    attendees = item.get("attendees") or set()
    assert len(attendees) <= capacity
    assert item["attendeeCount"] == len(attendees)
    # Every revoke found its user since nothing else removes seeds
    assert outcomes[: len(initial)] == ["ok"] * len(initial)
    successful = outcomes.count("ok")
    assert item["version"] == len(initial) + successful
