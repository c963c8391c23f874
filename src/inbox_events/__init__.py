"""inbox_events: event store and event bus for the inbox domain core."""

from .backend import EventStoreBackend
from .bus import EventBus, EventHandler
from .config import (
    EventsConfig,
    build_backend,
    build_event_bus,
    build_webhook_dispatcher,
    load,
)
from .exceptions import (
    ConfigError,
    ConfigErrorCodes,
    HandlerError,
    PersistenceError,
    PersistenceErrorCodes,
    WebhookDeliveryError,
    WebhookDeliveryErrorCodes,
)
from .http_backend import HttpEventStoreBackend
from .logger import new_logger
from .memory import InMemoryEventStoreBackend
from .models import (
    WILDCARD,
    AggregateType,
    DomainEvent,
    EventSnapshot,
    EventStats,
    EventStoreRecord,
    EventSubscription,
    EventType,
    RetryPolicy,
)
from .replay import apply_event, fold
from .store import EventStore
from .webhooks import (
    DeliveryResult,
    DeliveryStatus,
    InMemorySubscriptionStore,
    SubscriptionStore,
    WebhookDispatcher,
    generate_signature,
    verify_signature,
)

__all__ = [
    "WILDCARD",
    "AggregateType",
    "ConfigError",
    "ConfigErrorCodes",
    "DeliveryResult",
    "DeliveryStatus",
    "DomainEvent",
    "EventBus",
    "EventHandler",
    "EventSnapshot",
    "EventStats",
    "EventStore",
    "EventStoreBackend",
    "EventStoreRecord",
    "EventSubscription",
    "EventType",
    "EventsConfig",
    "HandlerError",
    "HttpEventStoreBackend",
    "InMemoryEventStoreBackend",
    "InMemorySubscriptionStore",
    "PersistenceError",
    "PersistenceErrorCodes",
    "RetryPolicy",
    "SubscriptionStore",
    "WebhookDeliveryError",
    "WebhookDeliveryErrorCodes",
    "WebhookDispatcher",
    "apply_event",
    "build_backend",
    "build_event_bus",
    "build_webhook_dispatcher",
    "fold",
    "generate_signature",
    "load",
    "new_logger",
    "verify_signature",
]
