"""Request dependencies -- the shared engine and the acting moderator.

Callers are authenticated upstream; the API only needs to know who is
acting so the audit log can attribute every change:

1. ``X-Actor-Id: <id>`` header (required on state-changing routes)
2. ``X-Actor-Role: admin|moderator|reviewer`` header (defaults to moderator)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, status

from modguard.config import load_config
from modguard.engine import ModerationEngine
from modguard.models.enforcement import ActorRole

# Shared engine instance
_engine: Optional[ModerationEngine] = None


def get_engine() -> ModerationEngine:
    """Return the singleton engine, built from ``$MODGUARD_CONFIG``."""
    global _engine
    if _engine is None:
        _engine = ModerationEngine(load_config())
    return _engine


@dataclass
class Actor:
    id: str
    role: ActorRole = ActorRole.MODERATOR


async def get_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """FastAPI dependency that identifies the acting moderator.

    Raises ``401 Unauthorized`` when no actor id is supplied and ``400`` for
    an unknown role.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    try:
        role = ActorRole(x_actor_role or ActorRole.MODERATOR.value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"unknown actor role: {x_actor_role}",
        )
    return Actor(id=x_actor_id, role=role)
