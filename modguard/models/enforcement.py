"""User suspensions and the actor roles that may change them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from modguard.models.base import coerce_enum, coerce_obj
from modguard.utils.timeutil import now_iso


class ActorRole(str, Enum):
    """Role hierarchy: admin > moderator > reviewer; system for automation."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    REVIEWER = "reviewer"
    SYSTEM = "system"


class SuspensionType(str, Enum):
    WARNING = "warning"
    TEMPORARY_RESTRICTION = "temporary_restriction"
    TEMPORARY_BAN = "temporary_ban"
    PERMANENT_BAN = "permanent_ban"
    EMERGENCY_BLOCK = "emergency_block"


class SuspensionSeverity(str, Enum):
    WARNING = "warning"
    MINOR = "minor"
    MAJOR = "major"
    SEVERE = "severe"
    CRITICAL = "critical"


class SuspensionEnd(str, Enum):
    """Why an inactive suspension stopped applying."""

    LIFTED = "lifted"
    EXPIRED = "expired"
    REPLACED = "replaced"


CAPABILITIES = (
    "can_send_messages",
    "can_create_conversations",
    "can_join_conversations",
    "can_upload_media",
    "can_change_profile",
)


@dataclass
class Restrictions:
    """Capabilities of a suspended user. Everything is denied by default."""

    can_send_messages: bool = False
    can_create_conversations: bool = False
    can_join_conversations: bool = False
    can_upload_media: bool = False
    can_change_profile: bool = False


@dataclass
class UserSuspension:
    """A restriction applied to one user."""

    id: str
    user_id: str
    suspended_by: str
    reason: str
    severity: SuspensionSeverity
    type: SuspensionType = SuspensionType.TEMPORARY_BAN
    violation_type: Optional[str] = None
    restrictions: Restrictions = field(default_factory=Restrictions)
    is_active: bool = True
    suspended_at: str = ""
    duration_hours: Optional[float] = None
    expires_at: Optional[str] = None  # None means permanent
    evidence_preserved: bool = False
    related_flag_ids: list[str] = field(default_factory=list)
    ended_at: Optional[str] = None
    ended_by: Optional[str] = None
    ended_reason: Optional[SuspensionEnd] = None
    replaced_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        if not self.suspended_at:
            self.suspended_at = self.created_at
        self.severity = coerce_enum(SuspensionSeverity, self.severity)
        self.type = coerce_enum(SuspensionType, self.type)
        self.ended_reason = coerce_enum(SuspensionEnd, self.ended_reason)
        self.restrictions = coerce_obj(Restrictions, self.restrictions) or Restrictions()

    @property
    def is_permanent(self) -> bool:
        return self.expires_at is None
