"""InMemoryEventStoreBackend implementation."""

from __future__ import annotations

import asyncio
import copy
from dataclasses import replace
from datetime import datetime

from .backend import EventStoreBackend
from .exceptions import PersistenceError, PersistenceErrorCodes
from .models import DomainEvent, EventSnapshot, EventStats, EventStoreRecord


class InMemoryEventStoreBackend(EventStoreBackend):
    """In-memory backend for tests and local development.

    Records and snapshots are stored and handed out as deep copies, so
    callers cannot change history through the objects they get back.
    """

    def __init__(self) -> None:
        self._streams: dict[str, list[EventStoreRecord]] = {}
        self._log: list[EventStoreRecord] = []
        self._snapshots: dict[str, EventSnapshot] = {}
        self._lock = asyncio.Lock()

    async def append(self, event: DomainEvent) -> EventStoreRecord:
        async with self._lock:
            stream = self._streams.setdefault(event.aggregate_id, [])
            if stream and stream[0].organization_id != event.organization_id:
                raise PersistenceError(
                    code=PersistenceErrorCodes.APPEND_FAILED,
                    message=(
                        f"aggregate {event.aggregate_id} belongs to another organization"
                    ),
                )
            record = EventStoreRecord.from_event(event, version=len(stream) + 1)
            stream.append(record)
            self._log.append(record)
            return _detached(record)

    async def fetch(
        self,
        aggregate_id: str,
        from_version: int | None = None,
        to_version: int | None = None,
        organization_id: str | None = None,
    ) -> list[EventStoreRecord]:
        return [
            _detached(r)
            for r in self._streams.get(aggregate_id, [])
            if (from_version is None or r.version >= from_version)
            and (to_version is None or r.version <= to_version)
            and (organization_id is None or r.organization_id == organization_id)
        ]

    async def fetch_by_type(
        self,
        event_type: str,
        organization_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EventStoreRecord]:
        records = [
            _detached(r)
            for r in self._all_records(organization_id)
            if r.event_type == event_type
            and (from_date is None or r.created_at >= from_date)
            and (to_date is None or r.created_at <= to_date)
        ]
        return records[::-1]

    async def fetch_organization(
        self, organization_id: str, limit: int, offset: int
    ) -> list[EventStoreRecord]:
        records = self._all_records(organization_id)[::-1]
        return [_detached(r) for r in records[offset : offset + limit]]

    async def save_snapshot(self, snapshot: EventSnapshot) -> None:
        self._snapshots[snapshot.aggregate_id] = replace(
            snapshot, state=copy.deepcopy(snapshot.state)
        )

    async def fetch_snapshot(self, aggregate_id: str) -> EventSnapshot | None:
        snapshot = self._snapshots.get(aggregate_id)
        if snapshot is None:
            return None
        return replace(snapshot, state=copy.deepcopy(snapshot.state))

    async def stats(self, organization_id: str | None = None) -> EventStats:
        records = self._all_records(organization_id)
        snapshots = [
            s
            for s in self._snapshots.values()
            if organization_id is None or s.organization_id == organization_id
        ]
        stats = EventStats(total_snapshots=len(snapshots))
        if not records:
            return stats

        for r in records:
            stats.events_by_type[r.event_type] = stats.events_by_type.get(r.event_type, 0) + 1
            key = str(r.aggregate_type)
            stats.events_by_aggregate_type[key] = stats.events_by_aggregate_type.get(key, 0) + 1
        aggregates = {r.aggregate_id for r in records}
        stats.total_events = len(records)
        stats.avg_events_per_aggregate = round(len(records) / len(aggregates), 2)
        stats.oldest_event = min(r.created_at for r in records)
        stats.newest_event = max(r.created_at for r in records)
        return stats

    def _all_records(self, organization_id: str | None) -> list[EventStoreRecord]:
        return [
            r
            for r in self._log
            if organization_id is None or r.organization_id == organization_id
        ]


def _detached(record: EventStoreRecord) -> EventStoreRecord:
    return replace(
        record,
        event_data=copy.deepcopy(record.event_data),
        metadata=copy.deepcopy(record.metadata),
    )
