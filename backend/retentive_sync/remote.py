"""Remote store adapter: per-table CRUD over an authenticated HTTP API."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .errors import AuthError, NetworkError, RemoteValidationError, SyncError

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]


class RemoteBackend(Protocol):
    async def insert(self, table: str, record: Payload) -> Optional[Payload]:  # pragma: no cover
        ...

    async def update(self, table: str, record_id: str, changes: Payload) -> Optional[Payload]:  # pragma: no cover
        ...

    async def delete(self, table: str, record_id: str) -> None:  # pragma: no cover
        ...

    async def fetch_one(self, table: str, record_id: str) -> Optional[Payload]:  # pragma: no cover
        ...

    async def fetch_changed(
        self,
        table: str,
        *,
        owner_column: str,
        owner_id: str,
        since: Optional[datetime] = None,
    ) -> List[Payload]:  # pragma: no cover
        ...


def error_for_status(status_code: int, message: str, details: Any = None) -> SyncError:
    """Map an HTTP failure status onto the sync error taxonomy."""
    if status_code in (401, 403):
        return AuthError(message, status_code=status_code, details=details)
    if status_code in (408, 425, 429) or status_code >= 500:
        return NetworkError(message, status_code=status_code, details=details)
    return RemoteValidationError(message, status_code=status_code, details=details)


def error_details(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def eq(value: Any) -> str:
    return f"eq.{value}"


class HttpRemoteBackend:
    """Talks to a PostgREST-style endpoint: `/{table}?column=eq.value`.

    Transport failures and 5xx responses raise NetworkError; 401/403 raise
    AuthError; every other 4xx raises RemoteValidationError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers=headers,
        )

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, f"/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("Remote %s %s failed: %s", method, table, exc)
            raise NetworkError(f"Remote {method} {table} failed: {exc}") from exc
        if response.status_code >= 400:
            message = f"Remote {method} {table} returned {response.status_code}"
            logger.debug("%s", message)
            raise error_for_status(response.status_code, message, error_details(response))
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Payload]:
        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteValidationError("Remote returned a non-JSON body", status_code=response.status_code) from exc
        if isinstance(data, dict):
            return [data]
        return [row for row in data if isinstance(row, dict)]

    async def insert(self, table: str, record: Payload) -> Optional[Payload]:
        response = await self._request("POST", table, json=record, headers={"Prefer": "return=representation"})
        rows = self._rows(response)
        return rows[0] if rows else None

    async def update(self, table: str, record_id: str, changes: Payload) -> Optional[Payload]:
        response = await self._request(
            "PATCH",
            table,
            params={"id": eq(record_id)},
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        return rows[0] if rows else None

    async def delete(self, table: str, record_id: str) -> None:
        await self._request("DELETE", table, params={"id": eq(record_id)})

    async def fetch_one(self, table: str, record_id: str) -> Optional[Payload]:
        response = await self._request("GET", table, params={"id": eq(record_id), "select": "*"})
        rows = self._rows(response)
        return rows[0] if rows else None

    async def fetch_changed(
        self,
        table: str,
        *,
        owner_column: str,
        owner_id: str,
        since: Optional[datetime] = None,
    ) -> List[Payload]:
        params = {owner_column: eq(owner_id), "select": "*", "order": "updated_at.asc"}
        if since is not None:
            params["updated_at"] = f"gte.{since.isoformat()}"
        response = await self._request("GET", table, params=params)
        return self._rows(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["HttpRemoteBackend", "Payload", "RemoteBackend", "eq", "error_details", "error_for_status"]
