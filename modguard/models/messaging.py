"""Messaging entities owned by the surrounding application.

The engine reads these records and only writes their moderation fields:
``moderation_status``, the deletion markers and the screenshot counter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from modguard.models.base import coerce_obj
from modguard.utils.timeutil import now_iso

SECRET_CONVERSATION = "secret"


@dataclass
class Conversation:
    id: str
    conversation_type: str = "direct"  # direct | group | secret | ...
    name: str = ""
    participant_ids: list[str] = field(default_factory=list)
    notify_screenshot_attempts: bool = False
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()

    @property
    def is_secret(self) -> bool:
        return self.conversation_type == SECRET_CONVERSATION


@dataclass
class ModerationStatus:
    status: str  # visible | hidden
    reason: str = ""
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None


@dataclass
class Message:
    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: str = "text"
    sent_at: str = ""
    auto_delete_at: Optional[str] = None
    disappear_at: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[str] = None
    deletion_type: Optional[str] = None
    moderation_status: Optional[ModerationStatus] = None
    report_count: int = 0
    screenshot_attempts: int = 0
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        if not self.sent_at:
            self.sent_at = self.created_at
        self.moderation_status = coerce_obj(ModerationStatus, self.moderation_status)

    @property
    def is_hidden(self) -> bool:
        return self.moderation_status is not None and self.moderation_status.status == "hidden"


@dataclass
class UserProfile:
    id: str
    username: str = ""
    full_name: str = ""
    email: str = ""
    registration_date: Optional[str] = None
    last_active_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()


@dataclass
class DeviceInfo:
    platform: str = "unknown"
    user_agent: str = ""
    app_version: str = ""


@dataclass
class ScreenshotLog:
    """One screenshot attempt, logged whether or not it was blocked."""

    id: str
    conversation_id: str
    conversation_type: str
    user_id: str
    method: str = "screenshot"
    message_id: Optional[str] = None
    device: DeviceInfo = field(default_factory=DeviceInfo)
    is_blocked: bool = False
    block_reason: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
        self.device = coerce_obj(DeviceInfo, self.device) or DeviceInfo()


@dataclass
class MessageDeletionLog:
    id: str
    message_id: str
    conversation_id: str
    deletion_type: str = "auto"
    deleted_by: Optional[str] = None
    reason: str = ""
    is_permanent: bool = True
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = now_iso()
