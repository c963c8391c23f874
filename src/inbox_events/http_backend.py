"""PostgREST (Supabase REST) backend over httpx."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx

from .backend import EventStoreBackend
from .exceptions import PersistenceError, PersistenceErrorCodes
from .models import DomainEvent, EventSnapshot, EventStats, EventStoreRecord

_EVENTS_PATH = "/rest/v1/event_store"
_SNAPSHOTS_PATH = "/rest/v1/event_snapshots"
_RPC_PATH = "/rest/v1/rpc"

Params = list[tuple[str, str | int]]


class HttpEventStoreBackend(EventStoreBackend):
    """Event store backend talking to the relational store's REST gateway.

    ``append`` goes through the ``append_event`` stored procedure, which
    computes the next version and inserts inside one transaction; the unique
    (aggregate_id, version) constraint turns a lost race into HTTP 409.
    """

    def __init__(
        self,
        rest_url: str,
        api_key: str = "",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rest_url = rest_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._rest_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    def _handle_error(self, resp: httpx.Response, code: str, context: str) -> None:
        if resp.status_code == 409:
            raise PersistenceError(
                code=PersistenceErrorCodes.VERSION_CONFLICT,
                message=f"{context}: {_backend_message(resp)}",
            )
        if resp.status_code >= 400:
            raise PersistenceError(
                code=code,
                message=f"{context}: HTTP {resp.status_code}: {_backend_message(resp)}",
            )

    async def _request(
        self,
        method: str,
        path: str,
        code: str,
        context: str,
        *,
        params: Params | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        try:
            async with self._make_client() as client:
                resp = await client.request(
                    method, path, params=params, json=json, headers=headers
                )
            self._handle_error(resp, code, context)
            if not resp.content:
                return None
            return resp.json()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                code=code,
                message=f"{context}: {e}",
                cause=e,
            ) from e

    async def append(self, event: DomainEvent) -> EventStoreRecord:
        event_id = await self._request(
            "POST",
            f"{_RPC_PATH}/append_event",
            PersistenceErrorCodes.APPEND_FAILED,
            "append_event",
            json={
                "p_aggregate_id": event.aggregate_id,
                "p_aggregate_type": str(event.aggregate_type),
                "p_event_type": event.event_type,
                "p_event_data": event.event_data,
                "p_organization_id": event.organization_id,
                "p_created_by": event.created_by,
                "p_metadata": event.metadata,
            },
        )
        if not event_id:
            raise PersistenceError(
                code=PersistenceErrorCodes.APPEND_FAILED,
                message="append_event: backend returned no event id",
            )
        rows = await self._request(
            "GET",
            _EVENTS_PATH,
            PersistenceErrorCodes.APPEND_FAILED,
            f"append_event({event_id})",
            params=[("id", f"eq.{event_id}"), ("select", "*")],
        )
        if not rows:
            raise PersistenceError(
                code=PersistenceErrorCodes.APPEND_FAILED,
                message=f"append_event: stored event {event_id} not readable",
            )
        return EventStoreRecord.from_dict(rows[0])

    async def fetch(
        self,
        aggregate_id: str,
        from_version: int | None = None,
        to_version: int | None = None,
        organization_id: str | None = None,
    ) -> list[EventStoreRecord]:
        params: Params = [("aggregate_id", f"eq.{aggregate_id}")]
        if from_version is not None:
            params.append(("version", f"gte.{from_version}"))
        if to_version is not None:
            params.append(("version", f"lte.{to_version}"))
        if organization_id is not None:
            params.append(("organization_id", f"eq.{organization_id}"))
        params.append(("order", "version.asc"))
        return await self._fetch_records(params, f"fetch({aggregate_id})")

    async def fetch_by_type(
        self,
        event_type: str,
        organization_id: str,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[EventStoreRecord]:
        params: Params = [
            ("event_type", f"eq.{event_type}"),
            ("organization_id", f"eq.{organization_id}"),
        ]
        if from_date is not None:
            params.append(("created_at", f"gte.{from_date.isoformat()}"))
        if to_date is not None:
            params.append(("created_at", f"lte.{to_date.isoformat()}"))
        params.append(("order", "created_at.desc"))
        return await self._fetch_records(params, f"fetch_by_type({event_type})")

    async def fetch_organization(
        self, organization_id: str, limit: int, offset: int
    ) -> list[EventStoreRecord]:
        params: Params = [
            ("organization_id", f"eq.{organization_id}"),
            ("order", "created_at.desc"),
            ("limit", limit),
            ("offset", offset),
        ]
        return await self._fetch_records(params, f"fetch_organization({organization_id})")

    async def _fetch_records(self, params: Params, context: str) -> list[EventStoreRecord]:
        rows = await self._request(
            "GET", _EVENTS_PATH, PersistenceErrorCodes.FETCH_FAILED, context, params=params
        )
        return [EventStoreRecord.from_dict(row) for row in rows or []]

    async def save_snapshot(self, snapshot: EventSnapshot) -> None:
        await self._request(
            "POST",
            _SNAPSHOTS_PATH,
            PersistenceErrorCodes.SNAPSHOT_FAILED,
            f"save_snapshot({snapshot.aggregate_id})",
            json=snapshot.to_dict(),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def fetch_snapshot(self, aggregate_id: str) -> EventSnapshot | None:
        rows = await self._request(
            "GET",
            _SNAPSHOTS_PATH,
            PersistenceErrorCodes.FETCH_FAILED,
            f"fetch_snapshot({aggregate_id})",
            params=[
                ("aggregate_id", f"eq.{aggregate_id}"),
                ("order", "version.desc"),
                ("limit", 1),
            ],
        )
        if not rows:
            return None
        return EventSnapshot.from_dict(rows[0])

    async def stats(self, organization_id: str | None = None) -> EventStats:
        rows = await self._request(
            "POST",
            f"{_RPC_PATH}/get_event_store_stats",
            PersistenceErrorCodes.STATS_FAILED,
            "get_event_store_stats",
            json={"p_organization_id": organization_id},
        )
        if isinstance(rows, list):
            rows = rows[0] if rows else {}
        return EventStats.from_dict(rows or {})


def _backend_message(resp: httpx.Response) -> str:
    """PostgREST error bodies carry ``message``; fall back to the raw text."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return resp.text
