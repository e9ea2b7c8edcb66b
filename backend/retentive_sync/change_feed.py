"""Per-table realtime change feed: event model, channel protocol and an HTTP streaming adapter."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import NetworkError
from .remote import error_details, eq, error_for_status

logger = logging.getLogger(__name__)

ChangeType = Literal["insert", "update", "delete"]


class ChangeEvent(BaseModel):
    """One change pushed by the remote store: `{eventType, new, old}`."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeType = Field(..., alias="eventType")
    table: Optional[str] = None
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @property
    def record_id(self) -> Optional[str]:
        for payload in (self.new, self.old):
            if payload and payload.get("id") is not None:
                return str(payload["id"])
        return None


@dataclass(frozen=True)
class ChannelSpec:
    """A named subscription to one table filtered on one column."""

    name: str
    table: str
    column: str
    value: str

    def params(self) -> Dict[str, str]:
        return {self.column: eq(self.value)}


class ChannelHandle(Protocol):
    def close(self) -> None:  # pragma: no cover - protocol definition
        ...


ChangeCallback = Callable[[ChangeEvent], None]
ErrorCallback = Callable[[Exception], None]


class ChangeFeed(Protocol):
    async def open_channel(
        self,
        spec: ChannelSpec,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> ChannelHandle:  # pragma: no cover - protocol definition
        ...


class _StreamHandle:
    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task

    def close(self) -> None:
        self._task.cancel()


class HttpChangeFeed:
    """Streams newline-delimited JSON change events from `/{table}` with `Accept: application/x-ndjson`.

    `open_channel` returns once the server has accepted the subscription; a
    refused subscription raises. Stream failures afterwards, including the
    server closing the stream, are reported through `on_error` exactly once.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        path_prefix: str = "/realtime",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Accept": "application/x-ndjson"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._prefix = path_prefix.rstrip("/")
        self._owns_client = client is None
        # streams stay open indefinitely; only connecting is bounded
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(10.0, read=None),
        )

    async def open_channel(
        self,
        spec: ChannelSpec,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> ChannelHandle:
        request = self._client.build_request("GET", f"{self._prefix}/{spec.table}", params=spec.params())
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not open channel {spec.name}: {exc}") from exc
        if response.status_code >= 400:
            await response.aread()
            await response.aclose()
            raise error_for_status(
                response.status_code,
                f"Channel {spec.name} refused with {response.status_code}",
                error_details(response),
            )
        task = asyncio.get_running_loop().create_task(self._pump(spec, response, on_change, on_error))
        return _StreamHandle(task)

    async def _pump(
        self,
        spec: ChannelSpec,
        response: httpx.Response,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
    ) -> None:
        try:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    event = ChangeEvent.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning("Ignoring malformed change event on %s", spec.name)
                    continue
                if event.table is None:
                    event = event.model_copy(update={"table": spec.table})
                on_change(event)
        except httpx.HTTPError as exc:
            on_error(NetworkError(f"Channel {spec.name} stream failed: {exc}"))
            return
        finally:
            await response.aclose()
        on_error(NetworkError(f"Channel {spec.name} closed by server"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "ChannelHandle",
    "ChannelSpec",
    "ErrorCallback",
    "HttpChangeFeed",
]
