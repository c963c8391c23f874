"""EventStore unit tests."""

from unittest.mock import AsyncMock

import pytest
from inbox_events import (
    DomainEvent,
    EventStore,
    EventStoreRecord,
    InMemoryEventStoreBackend,
    PersistenceError,
    PersistenceErrorCodes,
)


def make_event(
    event_type: str = "ConversationCreated",
    event_data: dict | None = None,
    aggregate_id: str = "conv-1",
    organization_id: str = "org-1",
) -> DomainEvent:
    return DomainEvent(
        aggregate_id=aggregate_id,
        aggregate_type="conversation",  # type: ignore[arg-type]
        event_type=event_type,
        organization_id=organization_id,
        event_data=event_data if event_data is not None else {},
    )


def make_store(**kwargs: int) -> EventStore:
    return EventStore(InMemoryEventStoreBackend(), **kwargs)


async def seed_conversation(store: EventStore) -> None:
    await store.append_event(make_event(event_data={"contact_id": "c-1", "status": "open"}))
    await store.append_event(make_event("ConversationAssigned", {"assigned_to": "agent-1"}))
    await store.append_event(make_event("ConversationStatusChanged", {"new_status": "pending"}))
    await store.append_event(make_event("ConversationAssigned", {"assigned_to": "agent-2"}))
    await store.append_event(make_event("ConversationStatusChanged", {"new_status": "resolved"}))


async def test_conversation_lifecycle() -> None:
    store = make_store()
    event_id = await store.append_event(
        make_event(event_data={"contact_id": "c-1", "status": "open"})
    )

    events = await store.get_events("conv-1")
    assert len(events) == 1
    assert events[0].id == event_id
    assert events[0].version == 1
    assert events[0].event_data == {"contact_id": "c-1", "status": "open"}

    state = await store.replay_events("conv-1")
    assert state == {
        "contact_id": "c-1",
        "status": "open",
        "id": "conv-1",
        "created_at": events[0].created_at.isoformat(),
    }

    await store.append_event(
        make_event("ConversationStatusChanged", {"old_status": "open", "new_status": "resolved"})
    )
    events = await store.get_events("conv-1")
    assert [e.version for e in events] == [1, 2]
    assert await store.replay_events("conv-1") == {**state, "status": "resolved"}


async def test_get_events_from_version_inclusive() -> None:
    store = make_store()
    await seed_conversation(store)
    events = await store.get_events("conv-1", from_version=4)
    assert [e.version for e in events] == [4, 5]


async def test_get_events_unknown_aggregate() -> None:
    assert await make_store().get_events("nope") == []


async def test_replay_is_deterministic() -> None:
    store = make_store()
    await seed_conversation(store)
    assert await store.replay_events("conv-1") == await store.replay_events("conv-1")


async def test_replay_bounded_by_version() -> None:
    store = make_store()
    await seed_conversation(store)
    state = await store.replay_events("conv-1", to_version=3)
    assert state["status"] == "pending"
    assert state["assigned_to"] == "agent-1"

    prefix_store = make_store()
    for record in (await store.get_events("conv-1"))[:3]:
        await prefix_store.append_event(record.to_event())
    prefix_state = await prefix_store.replay_events("conv-1")
    assert {k: v for k, v in prefix_state.items() if k != "created_at"} == {
        k: v for k, v in state.items() if k != "created_at"
    }


async def test_replay_skips_unknown_event_types() -> None:
    store = make_store()
    await seed_conversation(store)
    before = await store.replay_events("conv-1")
    await store.append_event(make_event("ConversationPinned", {"new_status": "pinned"}))
    assert await store.replay_events("conv-1") == before


async def test_aggregate_state_empty_without_events() -> None:
    assert await make_store().get_aggregate_state("conv-x") == {}


async def test_snapshot_seeded_replay_matches_full_replay() -> None:
    store = make_store()
    await seed_conversation(store)
    full = await store.replay_events("conv-1")

    await store.create_snapshot("conv-1", "conversation", "org-1")
    snapshot = await store.get_snapshot("conv-1")
    assert snapshot is not None
    assert snapshot.version == 5
    assert snapshot.state == full

    await store.append_event(make_event("ConversationAssigned", {"assigned_to": "agent-3"}))
    state = await store.get_aggregate_state("conv-1")
    assert state == {**full, "assigned_to": "agent-3"}


async def test_replay_before_snapshot_version_ignores_snapshot() -> None:
    store = make_store()
    await seed_conversation(store)
    expected = await store.replay_events("conv-1", to_version=2)
    await store.create_snapshot("conv-1", "conversation", "org-1")
    assert await store.replay_events("conv-1", to_version=2) == expected


async def test_snapshot_absent_is_none() -> None:
    assert await make_store().get_snapshot("conv-1") is None


async def test_create_snapshot_without_events_is_noop() -> None:
    store = make_store()
    await store.create_snapshot("conv-1", "conversation", "org-1")
    assert await store.get_snapshot("conv-1") is None


async def test_snapshot_policy_every_n_events() -> None:
    store = make_store(snapshot_every=3)
    await store.append_event(make_event(event_data={"status": "open"}))
    await store.append_event(make_event("ConversationAssigned", {"assigned_to": "a"}))
    assert await store.get_snapshot("conv-1") is None
    await store.append_event(make_event("ConversationStatusChanged", {"new_status": "closed"}))
    snapshot = await store.get_snapshot("conv-1")
    assert snapshot is not None
    assert snapshot.version == 3
    assert snapshot.state["status"] == "closed"


async def test_snapshot_policy_disabled() -> None:
    store = make_store(snapshot_every=0)
    for _ in range(3):
        await store.append_event(make_event())
    assert await store.get_snapshot("conv-1") is None


async def test_policy_snapshot_failure_does_not_fail_append() -> None:
    backend = InMemoryEventStoreBackend()
    backend.save_snapshot = AsyncMock(  # type: ignore[method-assign]
        side_effect=PersistenceError(PersistenceErrorCodes.SNAPSHOT_FAILED, "disk full")
    )
    store = EventStore(backend, snapshot_every=1)
    event_id = await store.append_event(make_event())
    assert event_id
    backend.save_snapshot.assert_awaited_once()


async def test_append_failure_raises_persistence_error() -> None:
    backend = InMemoryEventStoreBackend()
    backend.append = AsyncMock(  # type: ignore[method-assign]
        side_effect=PersistenceError(PersistenceErrorCodes.APPEND_FAILED, "connection reset")
    )
    store = EventStore(backend)
    with pytest.raises(PersistenceError) as exc_info:
        await store.append_event(make_event())
    assert "connection reset" in str(exc_info.value)
    backend.append.assert_awaited_once()


async def test_version_conflict_is_retried() -> None:
    backend = InMemoryEventStoreBackend()
    record = EventStoreRecord.from_event(make_event(), version=2, id="evt-2")
    backend.append = AsyncMock(  # type: ignore[method-assign]
        side_effect=[
            PersistenceError(PersistenceErrorCodes.VERSION_CONFLICT, "duplicate key"),
            record,
        ]
    )
    store = EventStore(backend, conflict_retries=3)
    assert await store.append_event(make_event()) == "evt-2"
    assert backend.append.await_count == 2


async def test_version_conflict_gives_up_after_retries() -> None:
    backend = InMemoryEventStoreBackend()
    backend.append = AsyncMock(  # type: ignore[method-assign]
        side_effect=PersistenceError(PersistenceErrorCodes.VERSION_CONFLICT, "duplicate key")
    )
    store = EventStore(backend, conflict_retries=2)
    with pytest.raises(PersistenceError) as exc_info:
        await store.append_event(make_event())
    assert exc_info.value.code == PersistenceErrorCodes.VERSION_CONFLICT
    assert backend.append.await_count == 3


async def test_get_events_by_type_is_tenant_scoped() -> None:
    store = make_store()
    await store.append_event(make_event())
    await store.append_event(make_event(aggregate_id="conv-2"))
    await store.append_event(make_event(aggregate_id="conv-3", organization_id="org-2"))
    events = await store.get_events_by_type("ConversationCreated", "org-1")
    assert [e.aggregate_id for e in events] == ["conv-2", "conv-1"]


async def test_get_organization_events_pagination() -> None:
    store = make_store()
    for i in range(4):
        await store.append_event(make_event(aggregate_id=f"conv-{i}"))
    page = await store.get_organization_events("org-1", limit=3, offset=0)
    assert [e.aggregate_id for e in page] == ["conv-3", "conv-2", "conv-1"]
    page = await store.get_organization_events("org-1", limit=3, offset=3)
    assert [e.aggregate_id for e in page] == ["conv-0"]


@pytest.mark.parametrize(("limit", "offset"), [(0, 0), (10, -1)])
async def test_get_organization_events_rejects_bad_window(limit: int, offset: int) -> None:
    with pytest.raises(ValueError):
        await make_store().get_organization_events("org-1", limit=limit, offset=offset)


async def test_get_event_stats() -> None:
    store = make_store()
    await seed_conversation(store)
    await store.create_snapshot("conv-1", "conversation", "org-1")
    stats = await store.get_event_stats("org-1")
    assert stats.total_events == 5
    assert stats.total_snapshots == 1
    assert stats.events_by_type["ConversationAssigned"] == 2


def test_rejects_negative_settings() -> None:
    with pytest.raises(ValueError):
        EventStore(InMemoryEventStoreBackend(), snapshot_every=-1)
    with pytest.raises(ValueError):
        EventStore(InMemoryEventStoreBackend(), conflict_retries=-1)
