"""Data model for domain events, persisted records, snapshots and subscriptions."""

from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

WILDCARD = "*"

_EVENT_TYPE_PATTERN = re.compile(r"^[A-Z][a-zA-Z]+$")


class AggregateType(StrEnum):
    """Entities whose history is kept as an event log."""

    CONVERSATION = "conversation"
    MESSAGE = "message"
    CONTACT = "contact"
    TEMPLATE = "template"
    ORGANIZATION = "organization"


class EventType(StrEnum):
    """Event shapes understood by the replay fold."""

    CONVERSATION_CREATED = "ConversationCreated"
    MESSAGE_CREATED = "MessageCreated"
    CONTACT_CREATED = "ContactCreated"
    CONVERSATION_STATUS_CHANGED = "ConversationStatusChanged"
    CONVERSATION_ASSIGNED = "ConversationAssigned"
    CONTACT_UPDATED = "ContactUpdated"


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class DomainEvent:
    """A fact about one aggregate, owned by exactly one organization.

    ``id``, ``version`` and ``created_at`` stay ``None`` until the store
    has persisted the event.
    """

    aggregate_id: str
    aggregate_type: AggregateType
    event_type: str
    organization_id: str
    event_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    id: str | None = None
    version: int | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.aggregate_id:
            raise ValueError("aggregate_id cannot be empty")
        if not self.organization_id:
            raise ValueError("organization_id cannot be empty")
        if not self.event_type:
            raise ValueError("event_type cannot be empty")
        if not _EVENT_TYPE_PATTERN.match(self.event_type):
            raise ValueError(f"invalid event_type format: {self.event_type!r}")
        # AggregateType() raises ValueError for names outside the enum
        object.__setattr__(self, "aggregate_type", AggregateType(self.aggregate_type))

    @property
    def is_persisted(self) -> bool:
        return self.id is not None and self.version is not None


@dataclass(frozen=True)
class EventStoreRecord:
    """A persisted DomainEvent. Never mutated after append."""

    id: str
    aggregate_id: str
    aggregate_type: AggregateType
    event_type: str
    organization_id: str
    version: int
    created_at: datetime
    event_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None

    @classmethod
    def from_event(
        cls,
        event: DomainEvent,
        version: int,
        id: str | None = None,
        created_at: datetime | None = None,
    ) -> EventStoreRecord:
        return cls(
            id=id or str(uuid.uuid4()),
            aggregate_id=event.aggregate_id,
            aggregate_type=event.aggregate_type,
            event_type=event.event_type,
            organization_id=event.organization_id,
            version=version,
            created_at=created_at or datetime.now(UTC),
            event_data=copy.deepcopy(event.event_data),
            metadata=copy.deepcopy(event.metadata),
            created_by=event.created_by,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventStoreRecord:
        return cls(
            id=str(data["id"]),
            aggregate_id=str(data["aggregate_id"]),
            aggregate_type=AggregateType(data["aggregate_type"]),
            event_type=data["event_type"],
            organization_id=str(data["organization_id"]),
            version=int(data["version"]),
            created_at=_parse_datetime(data["created_at"]),
            event_data=data.get("event_data") or {},
            metadata=data.get("metadata") or {},
            created_by=data.get("created_by"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "aggregate_id": self.aggregate_id,
            "aggregate_type": str(self.aggregate_type),
            "event_type": self.event_type,
            "organization_id": self.organization_id,
            "version": self.version,
            "created_at": _format_datetime(self.created_at),
            "event_data": self.event_data,
            "metadata": self.metadata,
            "created_by": self.created_by,
        }

    def to_event(self) -> DomainEvent:
        """Return the DomainEvent annotated with id, version and created_at."""
        return DomainEvent(
            aggregate_id=self.aggregate_id,
            aggregate_type=self.aggregate_type,
            event_type=self.event_type,
            organization_id=self.organization_id,
            event_data=self.event_data,
            metadata=self.metadata,
            created_by=self.created_by,
            id=self.id,
            version=self.version,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class EventSnapshot:
    """Materialized aggregate state as of ``version``."""

    aggregate_id: str
    aggregate_type: AggregateType
    state: dict[str, Any]
    version: int
    organization_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "aggregate_type", AggregateType(self.aggregate_type))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventSnapshot:
        now = datetime.now(UTC)
        return cls(
            aggregate_id=str(data["aggregate_id"]),
            aggregate_type=AggregateType(data["aggregate_type"]),
            state=data.get("state") or {},
            version=int(data["version"]),
            organization_id=str(data["organization_id"]),
            created_at=_parse_datetime(data.get("created_at")) or now,
            updated_at=_parse_datetime(data.get("updated_at")) or now,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "aggregate_id": self.aggregate_id,
            "aggregate_type": str(self.aggregate_type),
            "state": self.state,
            "version": self.version,
            "organization_id": self.organization_id,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }


@dataclass
class EventStats:
    """Event store statistics, optionally scoped to one organization."""

    total_events: int = 0
    events_by_type: dict[str, int] = field(default_factory=dict)
    events_by_aggregate_type: dict[str, int] = field(default_factory=dict)
    avg_events_per_aggregate: float | None = None
    total_snapshots: int = 0
    oldest_event: datetime | None = None
    newest_event: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventStats:
        avg = data.get("avg_events_per_aggregate")
        return cls(
            total_events=int(data.get("total_events") or 0),
            events_by_type=data.get("events_by_type") or {},
            events_by_aggregate_type=data.get("events_by_aggregate_type") or {},
            avg_events_per_aggregate=float(avg) if avg is not None else None,
            total_snapshots=int(data.get("total_snapshots") or 0),
            oldest_event=_parse_datetime(data.get("oldest_event")),
            newest_event=_parse_datetime(data.get("newest_event")),
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Webhook redelivery policy."""

    max_retries: int = 3
    retry_delay_seconds: float = 60.0
    exponential_backoff: bool = True

    def compute_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (0-based)."""
        if self.exponential_backoff:
            return self.retry_delay_seconds * (2**attempt)
        return self.retry_delay_seconds


@dataclass
class EventSubscription:
    """A tenant's webhook endpoint listening to a set of event types."""

    organization_id: str
    name: str
    event_types: list[str]
    webhook_url: str
    webhook_secret: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enabled: bool = True
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    last_event_at: datetime | None = None
    failure_count: int = 0

    def __post_init__(self) -> None:
        if not self.webhook_url:
            raise ValueError("webhook_url cannot be empty")
        if not self.webhook_secret:
            raise ValueError("webhook_secret cannot be empty")

    def matches(self, event: DomainEvent) -> bool:
        if not self.enabled or event.organization_id != self.organization_id:
            return False
        return event.event_type in self.event_types or WILDCARD in self.event_types

