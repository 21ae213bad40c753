"""Privacy API router: secret-conversation screenshot guard.

Prefix: ``/api/privacy``
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from modguard.engine import ModerationEngine
from web.backend.app.middleware.actor import get_engine
from web.backend.app.models.api import (
    ScreenshotRequest,
    ScreenshotResponse,
    SecretActionRequest,
    SecretActionResponse,
    plain,
)

router = APIRouter(prefix="/api/privacy", tags=["privacy"])


@router.post("/screenshots", response_model=ScreenshotResponse)
async def record_screenshot_attempt(
    req: ScreenshotRequest,
    engine: ModerationEngine = Depends(get_engine),
):
    """Report a screenshot attempt from a client.

    The attempt is blocked in secret conversations; the user is never
    restricted either way.
    """
    result = engine.record_screenshot_attempt(
        req.conversation_id,
        req.user_id,
        req.method,
        message_id=req.message_id,
        device=req.device,
    )
    return ScreenshotResponse(**plain(result))


@router.post("/secret-actions/validate", response_model=SecretActionResponse)
async def validate_secret_action(
    req: SecretActionRequest,
    engine: ModerationEngine = Depends(get_engine),
):
    check = engine.guard.validate_secret_action(req.conversation_id, req.action_type, req.user_id)
    return SecretActionResponse(**plain(check))


@router.get("/screenshots/stats")
async def screenshot_stats(
    conversation_id: Optional[str] = Query(None),
    days: int = Query(30, ge=1, le=365),
    engine: ModerationEngine = Depends(get_engine),
):
    return engine.guard.screenshot_stats(conversation_id, days)
