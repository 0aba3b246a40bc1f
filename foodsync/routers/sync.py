# foodsync/routers/sync.py
# FastAPI router for the snapshot sync protocol (pull / push)

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from foodsync.middleware.error_handler import ValidationError
from foodsync.repositories.snapshot_repository import SnapshotRepository
from foodsync.services.sync_service import SyncService


router = APIRouter(prefix="/sync", tags=["Sync"])


def get_service() -> SyncService:
    """Provide service with DI so handlers stay thin."""
    repo = SnapshotRepository()
    return SyncService(repository=repo)


def _require_object(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", reason="invalid_body")
    return payload


@router.post("/pull")
async def pull_snapshot(payload: Any = Body(None), service: SyncService = Depends(get_service)):
    """Return the stored snapshot for a share token; 404 when nothing was pushed yet."""
    body = _require_object(payload)
    result = await service.pull(body.get("shareToken"), body.get("profileId"))
    if result is None:
        # First sync for this token: expected, not an error
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={})
    return {"snapshot": result.snapshot, "revision": result.revision}


@router.post("/push")
async def push_snapshot(payload: Any = Body(None), service: SyncService = Depends(get_service)):
    """Store a snapshot if the caller's base revision is current."""
    body = _require_object(payload)
    result = await service.push(
        body.get("shareToken"),
        body.get("profileId"),
        body.get("baseRevision"),
        body.get("snapshot"),
    )
    if result.conflict:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"snapshot": result.snapshot, "revision": result.revision, "conflict": True},
        )
    return {"snapshot": result.snapshot, "revision": result.revision}
