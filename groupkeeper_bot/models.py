from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

MINUTE_MS = 60_000


class ContentKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class DetectionStage(str, Enum):
    WORD_FILTER = "word_filter"
    OMNI = "omni"
    VISION = "vision"
    PAYLOAD = "payload"
    OCR = "ocr"
    NONE = "none"
    UNCLASSIFIED = "unclassified"


class MemberRole(str, Enum):
    CREATOR = "creator"
    ADMINISTRATOR = "administrator"
    MEMBER = "member"
    RESTRICTED = "restricted"
    LEFT = "left"
    KICKED = "kicked"
    UNKNOWN = "unknown"

    @property
    def privileged(self) -> bool:
        return self in (MemberRole.CREATOR, MemberRole.ADMINISTRATOR)


class DecisionAction(str, Enum):
    EXEMPT = "exempt"
    WARN = "warn"
    SUPPRESSED = "suppressed"
    REMOVE = "remove"


@dataclass(slots=True, frozen=True)
class BotRights:
    """What the bot itself may do in a chat."""

    is_admin: bool = False
    can_delete_messages: bool = False
    can_restrict_members: bool = False

    @classmethod
    def full(cls) -> "BotRights":
        return cls(is_admin=True, can_delete_messages=True, can_restrict_members=True)


@dataclass(slots=True)
class ChatContext:
    chat_id: int
    user_id: int
    message_id: int
    timestamp: datetime
    username: Optional[str] = None
    display_name: Optional[str] = None

    def mention(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.display_name or str(self.user_id)


@dataclass(slots=True)
class MessageEnvelope:
    context: ChatContext
    text: Optional[str] = None
    caption: Optional[str] = None
    media_kind: Optional[ContentKind] = None
    media_ref: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    def content_text(self) -> str:
        return self.text or self.caption or ""


@dataclass(slots=True)
class GroupModerationConfig:
    chat_id: int
    text_enabled: bool = True
    image_enabled: bool = True
    video_enabled: bool = True

    def is_enabled(self, kind: ContentKind) -> bool:
        return getattr(self, f"{kind.value}_enabled")


@dataclass(slots=True)
class ViolationRecord:
    user_id: int
    chat_id: int
    count: int = 0
    last_warned_at: int = 0


@dataclass(slots=True)
class AlertRecord:
    chat_id: int
    message: str
    interval_minutes: int
    last_sent_at: int = 0

    def is_due(self, now: int) -> bool:
        return now - self.last_sent_at >= self.interval_minutes * MINUTE_MS


@dataclass(slots=True)
class ModerationVerdict:
    flagged: bool
    stage: DetectionStage
    reason: Optional[str] = None
    details: dict = field(default_factory=dict)

    @classmethod
    def clean(cls) -> "ModerationVerdict":
        return cls(flagged=False, stage=DetectionStage.NONE)

    @classmethod
    def unclassified(cls, reason: str) -> "ModerationVerdict":
        return cls(flagged=False, stage=DetectionStage.UNCLASSIFIED, details={"failure": reason})


@dataclass(slots=True)
class EscalationDecision:
    action: DecisionAction
    count: int
    threshold: int
    cache_only: bool = False
    content_removed: bool = True
    permission_denied: bool = False


@dataclass(slots=True)
class ModerationOutcome:
    message: MessageEnvelope
    kind: ContentKind
    verdict: Optional[ModerationVerdict]
    decision: Optional[EscalationDecision] = None
    notice: Optional[str] = None
    skipped_reason: Optional[str] = None


__all__ = [
    "AlertRecord",
    "BotRights",
    "ChatContext",
    "ContentKind",
    "DecisionAction",
    "DetectionStage",
    "EscalationDecision",
    "GroupModerationConfig",
    "MemberRole",
    "MessageEnvelope",
    "MINUTE_MS",
    "ModerationOutcome",
    "ModerationVerdict",
    "ViolationRecord",
]
