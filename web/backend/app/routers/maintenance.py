"""Maintenance API router: expiry sweeps and retention cleanup.

Prefix: ``/api/maintenance``
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from modguard.engine import ModerationEngine
from web.backend.app.middleware.actor import Actor, get_actor, get_engine
from web.backend.app.models.api import CleanupRequest, CleanupResponse, MaintenanceRequest, plain

router = APIRouter(prefix="/api/maintenance", tags=["maintenance"])


@router.post("/run")
async def run_maintenance(
    req: MaintenanceRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Run the named maintenance operations and return per-operation counts."""
    return {"results": engine.run_maintenance(req.operations, actor.id)}


@router.post("/cleanup", response_model=CleanupResponse)
async def bulk_cleanup(
    req: CleanupRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Bulk cleanup. With ``dry_run`` nothing is changed and only counts are returned."""
    result = engine.cleanup.bulk_cleanup(
        req.cleanup_type,
        req.criteria,
        req.dry_run,
        batch_size=req.batch_size,
        actor=actor.id,
    )
    return CleanupResponse(**plain(result), would_delete=result.would_delete)


@router.get("/stats")
async def cleanup_stats(
    days: int = Query(30, ge=1, le=365),
    engine: ModerationEngine = Depends(get_engine),
):
    return engine.cleanup.cleanup_stats(days)
