"""EventStore: durable append, ordered retrieval and replay per aggregate."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from .backend import EventStoreBackend
from .exceptions import PersistenceError, PersistenceErrorCodes
from .models import DomainEvent, EventSnapshot, EventStats, EventStoreRecord
from .replay import fold

logger = structlog.get_logger(__name__)

DEFAULT_SNAPSHOT_EVERY = 100
DEFAULT_CONFLICT_RETRIES = 3


class EventStore:
    """Tenant-scoped event store on top of an EventStoreBackend."""

    def __init__(
        self,
        backend: EventStoreBackend,
        snapshot_every: int = DEFAULT_SNAPSHOT_EVERY,
        conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
    ) -> None:
        if snapshot_every < 0:
            raise ValueError("snapshot_every must be >= 0")
        if conflict_retries < 0:
            raise ValueError("conflict_retries must be >= 0")
        self._backend = backend
        self._snapshot_every = snapshot_every
        self._conflict_retries = conflict_retries

    async def append(self, event: DomainEvent) -> EventStoreRecord:
        """Persist ``event`` and return the stored record.

        A version conflict (another writer took the same version first) is
        retried up to ``conflict_retries`` times; the backend recomputes the
        next version on every attempt.

        Raises:
            PersistenceError: the event was not recorded.
        """
        attempt = 0
        while True:
            try:
                record = await self._backend.append(event)
                break
            except PersistenceError as e:
                if e.code != PersistenceErrorCodes.VERSION_CONFLICT:
                    raise
                if attempt >= self._conflict_retries:
                    raise
                attempt += 1
                logger.warning(
                    "append_version_conflict",
                    aggregate_id=event.aggregate_id,
                    attempt=attempt,
                )

        logger.debug(
            "event_appended",
            event_id=record.id,
            event_type=record.event_type,
            aggregate_id=record.aggregate_id,
            version=record.version,
        )
        if self._snapshot_every and record.version % self._snapshot_every == 0:
            try:
                await self.create_snapshot(
                    record.aggregate_id, record.aggregate_type, record.organization_id
                )
            except PersistenceError as e:
                # the event is already stored
                logger.error(
                    "policy_snapshot_failed",
                    aggregate_id=record.aggregate_id,
                    version=record.version,
                    error=str(e),
                )
        return record

    async def append_event(self, event: DomainEvent) -> str:
        """Persist ``event`` and return the generated event id."""
        record = await self.append(event)
        return record.id

    async def get_events(
        self,
        aggregate_id: str,
        from_version: int | None = None,
        organization_id: str | None = None,
    ) -> list[EventStoreRecord]:
        """All events of an aggregate in ascending version order.

        ``from_version`` is inclusive. An unknown aggregate yields ``[]``.
        """
        return await self._backend.fetch(
            aggregate_id, from_version=from_version, organization_id=organization_id
        )

    async def get_events_by_type(
        self,
        event_type: str,
        organization_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EventStoreRecord]:
        return await self._backend.fetch_by_type(
            event_type, organization_id, from_date=from_date, to_date=to_date
        )

    async def get_organization_events(
        self, organization_id: str, limit: int = 100, offset: int = 0
    ) -> list[EventStoreRecord]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")
        return await self._backend.fetch_organization(organization_id, limit, offset)

    async def get_aggregate_state(self, aggregate_id: str) -> dict[str, Any]:
        """Current state of the aggregate, ``{}`` when it has no events."""
        return await self.replay_events(aggregate_id)

    async def create_snapshot(
        self, aggregate_id: str, aggregate_type: str, organization_id: str
    ) -> None:
        """Store a snapshot at the aggregate's current version.

        Previous snapshots are superseded, not pruned. Nothing is stored for
        an aggregate without events.
        """
        records = await self._backend.fetch(aggregate_id, organization_id=organization_id)
        if not records:
            return
        now = datetime.now(UTC)
        snapshot = EventSnapshot(
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            state=fold(records),
            version=records[-1].version,
            organization_id=organization_id,
            created_at=now,
            updated_at=now,
        )
        await self._backend.save_snapshot(snapshot)
        logger.info(
            "snapshot_created",
            aggregate_id=aggregate_id,
            aggregate_type=str(aggregate_type),
            version=snapshot.version,
        )

    async def get_snapshot(self, aggregate_id: str) -> EventSnapshot | None:
        return await self._backend.fetch_snapshot(aggregate_id)

    async def replay_events(
        self, aggregate_id: str, to_version: int | None = None
    ) -> dict[str, Any]:
        """Rebuild aggregate state by folding its events up to ``to_version``.

        The latest snapshot seeds the fold when it does not go past the
        bound; otherwise replay starts at version 1. A snapshot whose
        state is not a mapping is ignored. Both paths produce the
        same state for the same prefix of events.
        """
        snapshot = await self._backend.fetch_snapshot(aggregate_id)
        if snapshot is not None and not isinstance(snapshot.state, Mapping):
            # the append_event procedure writes its own snapshot as a JSON array
            logger.warning(
                "snapshot_state_ignored",
                aggregate_id=aggregate_id,
                version=snapshot.version,
                state_type=type(snapshot.state).__name__,
            )
            snapshot = None
        if snapshot is not None and (to_version is None or snapshot.version <= to_version):
            records = await self._backend.fetch(
                aggregate_id, from_version=snapshot.version + 1, to_version=to_version
            )
            return fold(records, initial=snapshot.state)

        records = await self._backend.fetch(aggregate_id, to_version=to_version)
        return fold(records)

    async def get_event_stats(self, organization_id: str | None = None) -> EventStats:
        return await self._backend.stats(organization_id)
