"""EventStoreBackend abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from .models import DomainEvent, EventSnapshot, EventStats, EventStoreRecord


class EventStoreBackend(ABC):
    """Ordered, append-only event log plus snapshot storage.

    Implementations own version assignment: ``append`` must compute
    ``max(version) + 1`` for the aggregate and insert in one atomic step.
    Every failure is reported as a PersistenceError.
    """

    @abstractmethod
    async def append(self, event: DomainEvent) -> EventStoreRecord:
        """Persist an event and return the stored record with its version."""
        ...

    @abstractmethod
    async def fetch(
        self,
        aggregate_id: str,
        from_version: int | None = None,
        to_version: int | None = None,
        organization_id: str | None = None,
    ) -> list[EventStoreRecord]:
        """Events for one aggregate in ascending version order (bounds inclusive)."""
        ...

    @abstractmethod
    async def fetch_by_type(
        self,
        event_type: str,
        organization_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EventStoreRecord]:
        """Tenant events of one type, newest first."""
        ...

    @abstractmethod
    async def fetch_organization(
        self, organization_id: str, limit: int, offset: int
    ) -> list[EventStoreRecord]:
        """One page of tenant events, newest first."""
        ...

    @abstractmethod
    async def save_snapshot(self, snapshot: EventSnapshot) -> None:
        """Store a snapshot, superseding the previous one for the aggregate."""
        ...

    @abstractmethod
    async def fetch_snapshot(self, aggregate_id: str) -> EventSnapshot | None:
        """Latest snapshot for the aggregate, or None."""
        ...

    @abstractmethod
    async def stats(self, organization_id: str | None = None) -> EventStats:
        """Aggregate statistics over the log."""
        ...
