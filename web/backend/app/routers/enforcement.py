"""Enforcement API router: suspensions, warnings and emergency blocks.

Prefix: ``/api/enforcement``
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from modguard.engine import ModerationEngine
from web.backend.app.middleware.actor import Actor, get_actor, get_engine
from web.backend.app.models.api import (
    ActionOutcomeResponse,
    CapabilityResponse,
    EmergencyBlockRequest,
    LiftRequest,
    SuspendRequest,
    SuspensionResponse,
    WarnRequest,
    plain,
)

router = APIRouter(prefix="/api/enforcement", tags=["enforcement"])


@router.post("/suspensions", response_model=SuspensionResponse, status_code=201)
async def suspend_user(
    req: SuspendRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Suspend a user. Omitting ``duration_hours`` makes the ban permanent."""
    suspension = engine.suspend_user(
        req.user_id,
        req.reason,
        req.severity,
        req.duration_hours,
        actor=actor.id,
        actor_role=actor.role,
        restrictions=req.restrictions,
        preserve_evidence=req.preserve_evidence,
    )
    return SuspensionResponse(**plain(suspension))


@router.get("/suspensions", response_model=list[SuspensionResponse])
async def list_suspensions(
    user_id: Optional[str] = Query(None),
    active_only: bool = Query(False),
    engine: ModerationEngine = Depends(get_engine),
):
    items = engine.suspensions.list_suspensions(user_id=user_id, active_only=active_only)
    return [SuspensionResponse(**plain(s)) for s in items]


@router.get("/suspensions/{suspension_id}", response_model=SuspensionResponse)
async def get_suspension(suspension_id: str, engine: ModerationEngine = Depends(get_engine)):
    return SuspensionResponse(**plain(engine.suspensions.get(suspension_id)))


@router.post("/suspensions/{suspension_id}/lift", response_model=SuspensionResponse)
async def lift_suspension(
    suspension_id: str,
    req: LiftRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Lift a suspension. Emergency blocks need an admin or the original imposer."""
    suspension = engine.suspensions.lift(suspension_id, actor.id, actor.role, req.reason)
    return SuspensionResponse(**plain(suspension))


@router.get("/users/{user_id}/capabilities/{capability}", response_model=CapabilityResponse)
async def check_capability(
    user_id: str,
    capability: str,
    engine: ModerationEngine = Depends(get_engine),
):
    allowed = engine.suspensions.check_capability(user_id, capability)
    return CapabilityResponse(user_id=user_id, capability=capability, allowed=allowed)


@router.post("/users/{user_id}/warn")
async def warn_user(
    user_id: str,
    req: WarnRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Warn a user. No restriction is applied."""
    engine.suspensions.warn_user(user_id, actor.id, req.reason, req.flag_id)
    return {"warned": True, "user_id": user_id}


@router.post("/emergency-block", response_model=ActionOutcomeResponse)
async def emergency_block(
    req: EmergencyBlockRequest,
    actor: Actor = Depends(get_actor),
    engine: ModerationEngine = Depends(get_engine),
):
    """Hide the message, block its sender and preserve evidence immediately."""
    outcome = engine.emergency_block(
        req.message_id,
        actor.id,
        req.reason,
        notify_authorities=req.notify_authorities,
        agency=req.agency,
        actor_role=actor.role,
    )
    return ActionOutcomeResponse(**plain(outcome))
