"""Persist-then-notify publish/subscribe bus."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import replace
from typing import Any

import structlog

from .exceptions import HandlerError
from .models import WILDCARD, DomainEvent
from .store import EventStore

logger = structlog.get_logger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None] | None]

DEFAULT_HANDLER_TIMEOUT_SECONDS = 5.0


class EventBus:
    """Publish/subscribe router owned by the application's composition root.

    ``publish`` appends the event to the store first and only then fans it
    out, so subscribers never see an event that failed to persist. Every
    handler runs concurrently under its own timeout; failures are logged and
    never reach the publisher or the other handlers.
    """

    def __init__(
        self,
        store: EventStore,
        handler_timeout_seconds: float | None = DEFAULT_HANDLER_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._handler_timeout = handler_timeout_seconds
        self._handlers: dict[str, list[EventHandler]] = {}

    @property
    def store(self) -> EventStore:
        return self._store

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to an event type, or to every type with ``"*"``."""
        self._handlers.setdefault(event_type, []).append(handler)

    def subscribe_many(self, event_types: Iterable[str], handler: EventHandler) -> None:
        for event_type in event_types:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """Remove the first registration of exactly this handler object."""
        handlers = self._handlers.get(event_type)
        if not handlers:
            return
        for i, registered in enumerate(handlers):
            if registered is handler:
                del handlers[i]
                break
        if not handlers:
            del self._handlers[event_type]

    def get_registered_event_types(self) -> list[str]:
        return [event_type for event_type, handlers in self._handlers.items() if handlers]

    def clear_handlers(self) -> None:
        self._handlers.clear()

    async def publish(self, event: DomainEvent) -> str:
        """Persist ``event``, notify subscribers, and return the event id.

        Raises:
            PersistenceError: the event was not persisted; no handler ran.
        """
        record = await self._store.append(event)
        persisted = replace(
            event, id=record.id, version=record.version, created_at=record.created_at
        )

        handlers = [
            *self._handlers.get(event.event_type, []),
            *self._handlers.get(WILDCARD, []),
        ]
        if handlers:
            await asyncio.gather(*(self._invoke(h, persisted) for h in handlers))
        return record.id

    async def _invoke(self, handler: EventHandler, event: DomainEvent) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                if self._handler_timeout is None:
                    await result
                else:
                    await asyncio.wait_for(result, timeout=self._handler_timeout)
        except Exception as e:
            err = HandlerError(
                event_id=event.id,
                event_type=event.event_type,
                handler_name=_handler_name(handler),
                cause=e,
            )
            logger.error(
                "event_handler_failed",
                event_id=err.event_id,
                event_type=err.event_type,
                handler=err.handler_name,
                error=str(err),
                timed_out=isinstance(e, asyncio.TimeoutError),
                exc_info=err,
            )


def _handler_name(handler: Any) -> str:
    name = getattr(handler, "__qualname__", None)
    if name is None:
        name = type(handler).__qualname__
    module = getattr(handler, "__module__", None)
    return f"{module}.{name}" if module else name
