"""Sync control endpoints for the UI process."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from .connectivity import ConnectivitySignal
from .context import SyncContext, get_context
from .errors import AuthError, NetworkError, SyncError
from .sync_audit import AuditEvent, recent_audit_events

router = APIRouter(prefix="/api/sync", tags=["sync"])
logger = logging.getLogger(__name__)


class SyncStatusResponse(BaseModel):
    is_syncing: bool
    pending: int
    online: bool
    active_channels: List[str]


class DrainResponse(BaseModel):
    succeeded: int
    failed: int


class ConnectivityRequest(BaseModel):
    signal: Literal["online", "offline", "focus"]


class PullResponse(BaseModel):
    applied: Dict[str, int]
    total: int


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(context: SyncContext = Depends(get_context)) -> SyncStatusResponse:
    return SyncStatusResponse(
        is_syncing=context.sync_engine.is_syncing,
        pending=context.sync_engine.pending_operations_count(),
        online=context.connectivity.is_online,
        active_channels=context.realtime.active_channels(),
    )


@router.post("/drain", response_model=DrainResponse)
async def drain_queue(context: SyncContext = Depends(get_context)) -> DrainResponse:
    result = await context.sync_engine.drain()
    return DrainResponse(succeeded=result.succeeded, failed=result.failed)


@router.post("/pull/{user_id}", response_model=PullResponse)
async def pull_changes(user_id: str, context: SyncContext = Depends(get_context)) -> PullResponse:
    try:
        result = await context.sync_engine.pull_changes(user_id)
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except NetworkError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except SyncError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return PullResponse(applied=result.applied, total=result.total)


@router.get("/queue")
def list_queue(context: SyncContext = Depends(get_context)) -> List[Dict[str, Any]]:
    return [operation.to_storage() for operation in context.queue.list()]


@router.get("/audit", response_model=List[AuditEvent])
def list_audit_events(
    limit: int = Query(50, ge=1, le=500),
    context: SyncContext = Depends(get_context),
) -> List[AuditEvent]:
    return recent_audit_events(context.session_factory, limit)


@router.post("/connectivity")
async def report_connectivity(
    payload: ConnectivityRequest,
    context: SyncContext = Depends(get_context),
) -> Dict[str, bool]:
    context.connectivity.handle_signal(ConnectivitySignal(payload.signal))
    return {"online": context.connectivity.is_online}


__all__ = ["router"]
