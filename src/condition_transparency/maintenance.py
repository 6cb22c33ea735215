"""
Share and consent health reporting.

A group needs attention when any of these reasons apply:

- consent_missing: members without a consent entry, or whose latest entry
  is a revocation
- expiring_soon: a live share is within its expiry lead time
- excessive_quiet_hour_access: the share of access events that landed in
  quiet hours over the trailing window exceeds the configured ratio
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field

from .exceptions import NotFound
from .models import AccessEventType, Clock, ShareState, VisibilityMode, utcnow

if TYPE_CHECKING:
    from .collaborators import MembershipDirectory
    from .config import TransparencySettings
    from .sharing.consent import ConsentLedger
    from .storage import TransparencyStore

logger = logging.getLogger("condition-transparency.maintenance")

REASON_CONSENT_MISSING = "consent_missing"
REASON_EXPIRING_SOON = "expiring_soon"
REASON_QUIET_HOUR_ACCESS = "excessive_quiet_hour_access"


class ShareHealth(BaseModel):
    share_id: str
    state: ShareState
    visibility_mode: VisibilityMode
    expires_at: Optional[datetime] = None
    access_count: int = 0


class MaintenanceReport(BaseModel):
    """
    Maintenance snapshot for one group.

    Attributes:
        state: State of the newest live share, or None without one
        quiet_hour_ratio: Quiet-hour access events / access events in the window
        pending_consents: Members still needing a consent grant
        reasons: Why the group needs attention (empty when healthy)
    """
    group_id: str
    group_name: str
    generated_at: datetime
    state: Optional[ShareState] = None
    expires_at: Optional[datetime] = None
    shares: list[ShareHealth] = Field(default_factory=list)
    access_events: int = 0
    quiet_hour_events: int = 0
    quiet_hour_ratio: float = 0.0
    pending_consents: int = 0
    total_members: int = 0
    reasons: list[str] = Field(default_factory=list)

    @property
    def needs_attention(self) -> bool:
        return bool(self.reasons)

    def as_dict(self) -> dict:
        data = self.model_dump(mode="json")
        data["needs_attention"] = self.needs_attention
        return data


class MaintenanceSnapshot:
    """Builds maintenance reports from shares, access events and consent."""

    def __init__(
        self,
        store: "TransparencyStore",
        members: "MembershipDirectory",
        consent: "ConsentLedger",
        settings: "TransparencySettings",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.members = members
        self.consent = consent
        self.settings = settings
        self.clock = clock

    def snapshot(self, group_id: str) -> MaintenanceReport:
        """
        Raises:
            NotFound: If the group does not exist
        """
        group = self.members.group(group_id)
        if group is None:
            raise NotFound(f"Group not found: {group_id}", resource="group")

        now = self.clock()
        lead_time = timedelta(hours=self.settings.share_expiring_soon_hours)
        live = sorted(
            (s for s in self.store.shares_for(group_id) if s.is_live(now)),
            key=lambda s: s.created_at,
            reverse=True,
        )
        shares = [
            ShareHealth(
                share_id=s.id,
                state=s.state(now, lead_time),
                visibility_mode=s.visibility_mode,
                expires_at=s.expires_at,
                access_count=s.access_count,
            )
            for s in live
        ]

        window_start = now - timedelta(days=self.settings.maintenance_window_days)
        accesses = self.store.share_events.filter(
            lambda e: e.group_id == group_id
            and e.event_type == AccessEventType.ACCESS
            and e.occurred_at >= window_start
        )
        quiet = sum(1 for e in accesses if e.quiet_hour_suppressed)
        ratio = quiet / len(accesses) if accesses else 0.0

        pending = self.consent.pending(group_id)

        reasons = []
        if pending:
            reasons.append(REASON_CONSENT_MISSING)
        if any(s.state == ShareState.EXPIRING_SOON for s in shares):
            reasons.append(REASON_EXPIRING_SOON)
        if ratio > self.settings.quiet_hour_attention_ratio:
            reasons.append(REASON_QUIET_HOUR_ACCESS)

        report = MaintenanceReport(
            group_id=group_id,
            group_name=group.name,
            generated_at=now,
            state=shares[0].state if shares else None,
            expires_at=shares[0].expires_at if shares else None,
            shares=shares,
            access_events=len(accesses),
            quiet_hour_events=quiet,
            quiet_hour_ratio=ratio,
            pending_consents=len(pending),
            total_members=len(self.members.members(group_id)),
            reasons=reasons,
        )
        if reasons:
            logger.info(f"Group {group_id} needs attention: {', '.join(reasons)}")
        return report

    def attention_queue(self) -> list[MaintenanceReport]:
        """Reports for groups with a live share that need attention, by group name."""
        now = self.clock()
        reports = []
        for group in sorted(self.members.groups(), key=lambda g: g.name):
            if not any(s.is_live(now) for s in self.store.shares_for(group.group_id)):
                continue
            report = self.snapshot(group.group_id)
            if report.needs_attention:
                reports.append(report)
        return reports


__all__ = [
    "REASON_CONSENT_MISSING",
    "REASON_EXPIRING_SOON",
    "REASON_QUIET_HOUR_ACCESS",
    "ShareHealth",
    "MaintenanceReport",
    "MaintenanceSnapshot",
]
