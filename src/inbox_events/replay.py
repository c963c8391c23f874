"""Aggregate state reconstruction.

This module holds the one fold used everywhere state is derived from the
log: client-side replay, ``get_aggregate_state`` and snapshot creation.
Reducers are pure; they return a new dict and never touch their input.
Event types without a reducer leave the state unchanged, so replay keeps
working when producers introduce new event types.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .models import EventStoreRecord, EventType

State = dict[str, Any]
Reducer = Callable[[State, EventStoreRecord], State]


def _created(state: State, record: EventStoreRecord) -> State:
    return {
        **record.event_data,
        "id": record.aggregate_id,
        "created_at": record.created_at.isoformat(),
    }


def _status_changed(state: State, record: EventStoreRecord) -> State:
    if "new_status" not in record.event_data:
        return state
    return {**state, "status": record.event_data["new_status"]}


def _assigned(state: State, record: EventStoreRecord) -> State:
    if "assigned_to" not in record.event_data:
        return state
    return {**state, "assigned_to": record.event_data["assigned_to"]}


def _contact_updated(state: State, record: EventStoreRecord) -> State:
    fields = record.event_data.get("updated_fields")
    if not isinstance(fields, Mapping):
        return state
    return {**state, **fields}


REDUCERS: dict[str, Reducer] = {
    EventType.CONVERSATION_CREATED: _created,
    EventType.MESSAGE_CREATED: _created,
    EventType.CONTACT_CREATED: _created,
    EventType.CONVERSATION_STATUS_CHANGED: _status_changed,
    EventType.CONVERSATION_ASSIGNED: _assigned,
    EventType.CONTACT_UPDATED: _contact_updated,
}


def apply_event(state: State, record: EventStoreRecord) -> State:
    """Apply one event to ``state``."""
    reducer = REDUCERS.get(record.event_type)
    if reducer is None:
        return state
    return reducer(state, record)


def fold(records: Iterable[EventStoreRecord], initial: State | None = None) -> State:
    """Fold events in ascending version order, starting from ``initial``."""
    state: State = dict(initial) if initial else {}
    for record in sorted(records, key=lambda r: r.version):
        state = apply_event(state, record)
    return state
