"""Signed webhook delivery for tenant event subscriptions."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import httpx
import structlog

from .exceptions import WebhookDeliveryError, WebhookDeliveryErrorCodes
from .models import DomainEvent, EventSubscription

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
EVENT_ID_HEADER = "X-Webhook-Id"


def generate_signature(secret: str, body: bytes) -> str:
    """Generate HMAC-SHA256 signature for a webhook body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Verify a webhook signature."""
    expected = generate_signature(secret, body)
    return hmac.compare_digest(expected, signature)


def build_payload(event: DomainEvent) -> dict[str, Any]:
    return {
        "event_id": event.id,
        "event_type": event.event_type,
        "aggregate_id": event.aggregate_id,
        "aggregate_type": str(event.aggregate_type),
        "data": event.event_data,
        "metadata": event.metadata,
        "version": event.version,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }


class DeliveryStatus(StrEnum):
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """Outcome of delivering one event to one subscription."""

    subscription_id: str
    event_id: str | None
    status: DeliveryStatus
    attempts: int
    http_status_code: int | None = None
    error: str | None = None


class SubscriptionStore(ABC):
    """Source of webhook subscriptions."""

    @abstractmethod
    async def list_matching(self, event: DomainEvent) -> list[EventSubscription]:
        """Enabled subscriptions of the event's tenant listening to its type."""
        ...

    @abstractmethod
    async def record_delivery(
        self, subscription_id: str, delivered: bool, at: datetime
    ) -> None:
        """Update delivery bookkeeping for a subscription."""
        ...


class InMemorySubscriptionStore(SubscriptionStore):
    """In-memory subscription store."""

    def __init__(self, subscriptions: list[EventSubscription] | None = None) -> None:
        self._subscriptions: dict[str, EventSubscription] = {}
        for subscription in subscriptions or []:
            self.add(subscription)

    def add(self, subscription: EventSubscription) -> None:
        self._subscriptions[subscription.id] = subscription

    def get(self, subscription_id: str) -> EventSubscription | None:
        return self._subscriptions.get(subscription_id)

    async def list_matching(self, event: DomainEvent) -> list[EventSubscription]:
        return [s for s in self._subscriptions.values() if s.matches(event)]

    async def record_delivery(
        self, subscription_id: str, delivered: bool, at: datetime
    ) -> None:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return
        subscription.last_event_at = at
        if delivered:
            subscription.failure_count = 0
        else:
            subscription.failure_count += 1


class WebhookDispatcher:
    """EventBus handler that forwards events to matching webhook subscriptions.

    Subscribe it to ``"*"``. Each call schedules one background delivery per
    matching subscription and returns right away; retries follow the
    subscription's RetryPolicy. Use ``drain`` to wait for in-flight deliveries.
    """

    def __init__(
        self,
        subscriptions: SubscriptionStore,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._subscriptions = subscriptions
        self._timeout = timeout_seconds
        self._transport = transport
        self._tasks: set[asyncio.Task[DeliveryResult]] = set()

    async def __call__(self, event: DomainEvent) -> None:
        for subscription in await self._subscriptions.list_matching(event):
            task = asyncio.create_task(self.deliver(subscription, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> list[DeliveryResult]:
        """Wait for deliveries still in flight and return their results.

        Deliveries that finished before the call are not included.
        """
        results: list[DeliveryResult] = []
        while self._tasks:
            results.extend(await asyncio.gather(*list(self._tasks)))
        return results

    async def deliver(
        self, subscription: EventSubscription, event: DomainEvent
    ) -> DeliveryResult:
        """POST the signed event to the subscription's URL, retrying on failure.

        Never raises: any failure ends as a ``FAILED`` result and counts
        against the subscription.
        """
        try:
            return await self._deliver(subscription, event)
        except Exception as e:
            logger.error(
                "webhook_delivery_failed",
                subscription_id=subscription.id,
                event_id=event.id,
                attempts=0,
                error=repr(e),
                exc_info=e,
            )
            await self._record(subscription.id, False)
            return DeliveryResult(
                subscription_id=subscription.id,
                event_id=event.id,
                status=DeliveryStatus.FAILED,
                attempts=0,
                error=repr(e),
            )

    async def _deliver(
        self, subscription: EventSubscription, event: DomainEvent
    ) -> DeliveryResult:
        body = json.dumps(build_payload(event), separators=(",", ":")).encode()
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: generate_signature(subscription.webhook_secret, body),
            EVENT_HEADER: event.event_type,
            EVENT_ID_HEADER: event.id or "",
        }
        policy = subscription.retry_policy
        max_attempts = policy.max_retries + 1
        last_error: WebhookDeliveryError | None = None

        for attempt in range(max_attempts):
            try:
                status_code = await self._post(subscription.webhook_url, body, headers)
            except WebhookDeliveryError as e:
                last_error = e
                logger.warning(
                    "webhook_attempt_failed",
                    subscription_id=subscription.id,
                    event_id=event.id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt + 1 < max_attempts:
                    await asyncio.sleep(policy.compute_delay(attempt))
                continue

            await self._record(subscription.id, True)
            logger.info(
                "webhook_delivered",
                subscription_id=subscription.id,
                event_id=event.id,
                attempts=attempt + 1,
            )
            return DeliveryResult(
                subscription_id=subscription.id,
                event_id=event.id,
                status=DeliveryStatus.DELIVERED,
                attempts=attempt + 1,
                http_status_code=status_code,
            )

        await self._record(subscription.id, False)
        logger.error(
            "webhook_delivery_failed",
            subscription_id=subscription.id,
            event_id=event.id,
            attempts=max_attempts,
            error=str(last_error),
        )
        return DeliveryResult(
            subscription_id=subscription.id,
            event_id=event.id,
            status=DeliveryStatus.FAILED,
            attempts=max_attempts,
            http_status_code=last_error.status_code if last_error else None,
            error=str(last_error) if last_error else None,
        )

    async def _record(self, subscription_id: str, delivered: bool) -> None:
        try:
            await self._subscriptions.record_delivery(
                subscription_id, delivered, datetime.now(UTC)
            )
        except Exception as e:
            logger.error(
                "webhook_record_delivery_failed",
                subscription_id=subscription_id,
                delivered=delivered,
                error=repr(e),
            )

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> int:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise WebhookDeliveryError(
                code=WebhookDeliveryErrorCodes.TRANSPORT_ERROR,
                message=f"POST {url} failed: {e}",
                cause=e,
            ) from e
        if not resp.is_success:
            raise WebhookDeliveryError(
                code=WebhookDeliveryErrorCodes.HTTP_ERROR,
                message=f"POST {url}: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp.status_code
