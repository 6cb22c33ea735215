"""
Data models for the condition-timer transparency engine.

Key components:
- Enumerations for urgency tiers, roles, reasons and lifecycle states
- TokenConditionState: read-only token data supplied by the map layer
- Summary: the derived, point-in-time projection of a group's timers
- Acknowledgement, AdjustmentEvent, ConsentLogEntry, ShareAccessEvent:
  records owned by the transparency store
- Share, ExportRequest, WebhookRegistration: mutable rows with lifecycles
- Membership, GroupProfile, NotificationPreference, MentorBriefing:
  collaborator records consumed read-only
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from shortuuid import random

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id(length: int = 12) -> str:
    return random(length=length)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class UrgencyTier(str, Enum):
    """
    Ordered severity of a condition timer.

    Compare tiers through ``rank``; the string values only serve
    serialization.
    """
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _TIER_RANKS[self]


_TIER_RANKS = {
    UrgencyTier.NORMAL: 0,
    UrgencyTier.WARNING: 1,
    UrgencyTier.CRITICAL: 2,
}


class Faction(str, Enum):
    ALLIED = "allied"
    HOSTILE = "hostile"
    NEUTRAL = "neutral"
    HAZARD = "hazard"


class GroupRole(str, Enum):
    """
    Group member roles.

    OWNER and DUNGEON_MASTER are privileged viewers; PLAYER and OBSERVER
    see the public projection.
    """
    OWNER = "owner"
    DUNGEON_MASTER = "dungeon_master"
    PLAYER = "player"
    OBSERVER = "observer"


class AdjustmentReason(str, Enum):
    MANUAL_ADJUSTMENT = "manual_adjustment"
    TURN_TICK = "turn_tick"
    EXPIRY = "expiry"


class AckSource(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConsentAction(str, Enum):
    GRANTED = "granted"
    REVOKED = "revoked"


class VisibilityMode(str, Enum):
    COUNTS = "counts"
    DETAILS = "details"


class ShareState(str, Enum):
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    REDACTED = "redacted"


class AccessEventType(str, Enum):
    CREATED = "created"
    ACCESS = "access"
    REVOCATION = "revocation"
    EXTENSION = "extension"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class ExportStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    PUSH = "push"
    EMAIL = "email"


# ---------------------------------------------------------------------------
# Token state (external)
# ---------------------------------------------------------------------------

class TokenConditionState(BaseModel):
    """
    Live condition state of a battle-map token.

    A condition listed in ``conditions`` without an entry in ``durations``
    is active with an unknown number of rounds left. A duration of zero or
    less means the timer has run out.

    Attributes:
        token_id: Unique token identifier
        map_id: Map the token is placed on
        group_id: Group that owns the map
        name: Token display name
        faction: Allegiance of the token
        hidden: Whether the token is hidden from players
        owner_user_id: Player controlling the token, if any
        conditions: Active condition keys
        durations: Condition key -> remaining rounds
    """
    token_id: str
    map_id: str
    group_id: str
    name: str
    faction: Faction = Faction.NEUTRAL
    hidden: bool = False
    owner_user_id: Optional[str] = None
    conditions: list[str] = Field(default_factory=list)
    durations: dict[str, int] = Field(default_factory=dict)

    def active_conditions(self) -> list[str]:
        """Return active condition keys in listed order, without duplicates."""
        active: list[str] = []
        for key in self.conditions:
            if key in active:
                continue
            rounds = self.durations.get(key)
            if rounds is not None and rounds <= 0:
                continue
            active.append(key)
        return active

    def is_active(self, condition_key: str) -> bool:
        return condition_key in self.active_conditions()

    def rounds_for(self, condition_key: str) -> Optional[int]:
        return self.durations.get(condition_key)


# ---------------------------------------------------------------------------
# Summary (derived)
# ---------------------------------------------------------------------------

class ConditionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    rounds_remaining: Optional[int] = None
    urgency: UrgencyTier
    summary_text: str


class TokenSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    token_name: str
    faction: Faction
    map_id: str
    hidden: bool = False
    owner_user_id: Optional[str] = None
    conditions: tuple[ConditionSummary, ...] = ()


class Summary(BaseModel):
    """
    Point-in-time condition-timer summary for a group.

    ``generated_at`` is the fingerprint acknowledgements are tied to; every
    regeneration yields a new fingerprint.
    """
    model_config = ConfigDict(frozen=True)

    group_id: str
    generated_at: datetime
    entries: tuple[TokenSummary, ...] = ()

    def pairs(self) -> dict[tuple[str, str], ConditionSummary]:
        """Map (token_id, condition_key) to its condition entry."""
        return {
            (entry.token_id, condition.key): condition
            for entry in self.entries
            for condition in entry.conditions
        }

    def entry_for(self, token_id: str) -> Optional[TokenSummary]:
        for entry in self.entries:
            if entry.token_id == token_id:
                return entry
        return None


class Escalation(BaseModel):
    """An urgency tier increase for one (token, condition) pair."""
    model_config = ConfigDict(frozen=True)

    group_id: str
    token_id: str
    token_name: str
    faction: Faction
    hidden: bool = False
    condition_key: str
    condition_label: str
    previous_tier: Optional[UrgencyTier] = None
    new_tier: UrgencyTier
    rounds_remaining: Optional[int] = None
    generated_at: datetime


# ---------------------------------------------------------------------------
# Engine-owned records
# ---------------------------------------------------------------------------

class Acknowledgement(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    token_id: str
    user_id: str
    condition_key: str
    summary_generated_at: datetime
    acknowledged_at: datetime
    source: AckSource = AckSource.ONLINE
    queued_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.group_id, self.token_id, self.user_id, self.condition_key)


class AdjustmentEvent(BaseModel):
    """
    Immutable chronicle entry for one timer change.

    Attributes:
        previous_rounds: Rounds before the change (None when the timer started)
        new_rounds: Rounds after the change (None when the condition cleared)
        delta: new_rounds - previous_rounds with missing sides treated as 0
        summary_text: Public description, safe for any viewer
        detail_text: Attributed description for privileged viewers
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    group_id: str
    token_id: str
    condition_key: str
    previous_rounds: Optional[int] = None
    new_rounds: Optional[int] = None
    delta: int = 0
    reason: AdjustmentReason
    context: dict[str, Any] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    summary_text: str
    detail_text: str
    recorded_at: datetime


class ConsentLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    group_id: str
    user_id: str
    recorded_by: Optional[str] = None
    action: ConsentAction
    visibility: VisibilityMode = VisibilityMode.COUNTS
    source: str = "settings"
    notes: Optional[str] = None
    recorded_at: datetime


class ShareAccessEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    share_id: str
    group_id: str
    event_type: AccessEventType
    occurred_at: datetime
    ip_hash: Optional[str] = None
    user_agent_hash: Optional[str] = None
    user_id: Optional[str] = None
    quiet_hour_suppressed: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class Share(BaseModel):
    """
    A token-addressed public view of a group's summary.

    ``access_count`` only grows; revocation stamps ``revoked_at`` and keeps
    the row so the access history stays queryable.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    token: str
    group_id: str
    created_by: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    visibility_mode: VisibilityMode = VisibilityMode.COUNTS
    preset_key: Optional[str] = None
    consent_snapshot: dict[str, dict[str, Any]] = Field(default_factory=dict)
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        if self.revoked_at is not None:
            return False
        return self.expires_at is None or self.expires_at > now

    def state(self, now: datetime, lead_time: timedelta) -> ShareState:
        """Classify the share relative to ``now``."""
        if self.revoked_at is not None:
            return ShareState.REDACTED
        if self.expires_at is not None and self.expires_at <= now:
            return ShareState.EXPIRED
        if self.expires_at is not None and self.expires_at - now <= lead_time:
            return ShareState.EXPIRING_SOON
        return ShareState.ACTIVE


class ExportRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    group_id: str
    requested_by: str
    format: ExportFormat = ExportFormat.JSON
    visibility_mode: VisibilityMode = VisibilityMode.COUNTS
    filters: dict[str, Any] = Field(default_factory=dict)
    status: ExportStatus = ExportStatus.PENDING
    file_path: Optional[str] = None
    failure_reason: Optional[str] = None
    retry_attempts: int = Field(default=0, ge=0)
    created_at: datetime
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ExportStatus.COMPLETED, ExportStatus.FAILED)


class WebhookRegistration(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    group_id: str
    url: str
    secret: str
    active: bool = True
    call_count: int = Field(default=0, ge=0)
    consecutive_failures: int = Field(default=0, ge=0)
    last_triggered_at: Optional[datetime] = None
    last_failed_at: Optional[datetime] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Collaborator records (read-only)
# ---------------------------------------------------------------------------

class Membership(BaseModel):
    group_id: str
    user_id: str
    display_name: str = ""
    role: GroupRole = GroupRole.PLAYER

    @property
    def is_privileged(self) -> bool:
        return self.role in (GroupRole.OWNER, GroupRole.DUNGEON_MASTER)


class GroupProfile(BaseModel):
    group_id: str
    name: str
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    timezone: str = "UTC"


class NotificationPreference(BaseModel):
    """
    Per-user notification channels and quiet hours.

    The defaults are used for members without a stored preference.
    """
    user_id: str
    channel_in_app: bool = True
    channel_push: bool = False
    channel_email: bool = True
    quiet_hours_start: Optional[time] = None
    quiet_hours_end: Optional[time] = None
    timezone: str = "UTC"

    def enabled_channels(self) -> list[NotificationChannel]:
        channels = []
        if self.channel_in_app:
            channels.append(NotificationChannel.IN_APP)
        if self.channel_push:
            channels.append(NotificationChannel.PUSH)
        if self.channel_email:
            channels.append(NotificationChannel.EMAIL)
        return channels


class MentorBriefing(BaseModel):
    id: str
    group_id: str
    status: str
    moderation_status: str
    text: str = ""
    generated_at: datetime

    @property
    def is_publishable(self) -> bool:
        return self.status == "completed" and self.moderation_status == "approved"


__all__ = [
    "Clock",
    "utcnow",
    "new_id",
    "UrgencyTier",
    "Faction",
    "GroupRole",
    "AdjustmentReason",
    "AckSource",
    "ConsentAction",
    "VisibilityMode",
    "ShareState",
    "AccessEventType",
    "ExportFormat",
    "ExportStatus",
    "NotificationChannel",
    "TokenConditionState",
    "ConditionSummary",
    "TokenSummary",
    "Summary",
    "Escalation",
    "Acknowledgement",
    "AdjustmentEvent",
    "ConsentLogEntry",
    "ShareAccessEvent",
    "Share",
    "ExportRequest",
    "WebhookRegistration",
    "Membership",
    "GroupProfile",
    "NotificationPreference",
    "MentorBriefing",
]
