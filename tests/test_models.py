"""models unit tests."""

from datetime import UTC, datetime

import pytest
from inbox_events import (
    AggregateType,
    DomainEvent,
    EventSnapshot,
    EventStats,
    EventStoreRecord,
    EventSubscription,
    RetryPolicy,
)


def make_event(**overrides: object) -> DomainEvent:
    fields: dict[str, object] = {
        "aggregate_id": "conv-1",
        "aggregate_type": "conversation",
        "event_type": "ConversationCreated",
        "organization_id": "org-1",
        "event_data": {"contact_id": "c-1", "status": "open"},
    }
    fields.update(overrides)
    return DomainEvent(**fields)  # type: ignore[arg-type]


def test_domain_event_coerces_aggregate_type() -> None:
    event = make_event()
    assert event.aggregate_type is AggregateType.CONVERSATION
    assert event.id is None
    assert event.version is None
    assert not event.is_persisted


@pytest.mark.parametrize("field", ["aggregate_id", "organization_id", "event_type"])
def test_domain_event_rejects_empty_required_field(field: str) -> None:
    with pytest.raises(ValueError):
        make_event(**{field: ""})


def test_domain_event_rejects_unknown_aggregate_type() -> None:
    with pytest.raises(ValueError):
        make_event(aggregate_type="invoice")


@pytest.mark.parametrize("event_type", ["conversationCreated", "Conversation_Created", "C"])
def test_domain_event_rejects_malformed_event_type(event_type: str) -> None:
    with pytest.raises(ValueError):
        make_event(event_type=event_type)


def test_domain_event_accepts_unknown_but_well_formed_type() -> None:
    event = make_event(event_type="MessageReactionAdded")
    assert event.event_type == "MessageReactionAdded"


def test_domain_event_is_immutable() -> None:
    event = make_event()
    with pytest.raises(AttributeError):
        event.version = 3  # type: ignore[misc]


def test_record_round_trips_wire_row() -> None:
    row = {
        "id": "evt-1",
        "aggregate_id": "conv-1",
        "aggregate_type": "conversation",
        "event_type": "ConversationCreated",
        "organization_id": "org-1",
        "version": 1,
        "created_at": "2025-10-14T12:00:00+00:00",
        "event_data": {"status": "open"},
        "metadata": None,
        "created_by": None,
    }
    record = EventStoreRecord.from_dict(row)
    assert record.created_at == datetime(2025, 10, 14, 12, 0, tzinfo=UTC)
    assert record.metadata == {}
    assert record.to_dict()["created_at"] == "2025-10-14T12:00:00+00:00"


def test_record_to_event_carries_persisted_fields() -> None:
    record = EventStoreRecord.from_event(make_event(), version=4, id="evt-4")
    event = record.to_event()
    assert event.id == "evt-4"
    assert event.version == 4
    assert event.created_at == record.created_at
    assert event.is_persisted


def test_snapshot_from_dict_defaults_timestamps() -> None:
    snapshot = EventSnapshot.from_dict(
        {
            "aggregate_id": "conv-1",
            "aggregate_type": "conversation",
            "state": {"status": "open"},
            "version": 100,
            "organization_id": "org-1",
        }
    )
    assert snapshot.aggregate_type is AggregateType.CONVERSATION
    assert snapshot.created_at is not None


def test_stats_from_dict_handles_nulls() -> None:
    stats = EventStats.from_dict(
        {"total_events": 0, "events_by_type": None, "avg_events_per_aggregate": None}
    )
    assert stats.total_events == 0
    assert stats.events_by_type == {}
    assert stats.avg_events_per_aggregate is None


def test_retry_policy_exponential_delay() -> None:
    policy = RetryPolicy(retry_delay_seconds=60)
    assert [policy.compute_delay(i) for i in range(3)] == [60, 120, 240]


def test_retry_policy_fixed_delay() -> None:
    policy = RetryPolicy(retry_delay_seconds=5, exponential_backoff=False)
    assert policy.compute_delay(4) == 5


def make_subscription(**overrides: object) -> EventSubscription:
    fields: dict[str, object] = {
        "organization_id": "org-1",
        "name": "crm-sync",
        "event_types": ["ConversationCreated"],
        "webhook_url": "https://hooks.example.com/inbox",
        "webhook_secret": "s3cret",
    }
    fields.update(overrides)
    return EventSubscription(**fields)  # type: ignore[arg-type]


def test_subscription_matches_type_and_tenant() -> None:
    sub = make_subscription()
    assert sub.matches(make_event())
    assert not sub.matches(make_event(organization_id="org-2"))
    assert not sub.matches(make_event(event_type="ConversationAssigned"))


def test_subscription_wildcard_and_disabled() -> None:
    assert make_subscription(event_types=["*"]).matches(make_event(event_type="ContactUpdated"))
    assert not make_subscription(enabled=False).matches(make_event())


def test_subscription_requires_url_and_secret() -> None:
    with pytest.raises(ValueError):
        make_subscription(webhook_url="")
    with pytest.raises(ValueError):
        make_subscription(webhook_secret="")
