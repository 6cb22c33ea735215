"""
Consent ledger for external condition sharing.

Consent is an append-only log; a user's current consent is their most
recent entry. A "details" grant also covers the counts view.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union

from ..exceptions import NotFound, ValidationError
from ..models import Clock, ConsentAction, ConsentLogEntry, VisibilityMode, utcnow

if TYPE_CHECKING:
    from ..collaborators import MembershipDirectory
    from ..storage import TransparencyStore

logger = logging.getLogger("condition-transparency.consent")


@dataclass(frozen=True)
class ConsentStatus:
    user_id: str
    display_name: str
    status: str
    visibility: Optional[VisibilityMode] = None
    recorded_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status != ConsentAction.GRANTED.value

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "display_name": self.display_name,
            "status": self.status,
            "visibility": self.visibility.value if self.visibility else None,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }


class ConsentLedger:
    """
    Records consent decisions and answers current-state queries.

    Attributes:
        store: Transparency store holding the consent log
        members: Membership directory
    """

    def __init__(
        self,
        store: "TransparencyStore",
        members: "MembershipDirectory",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.members = members
        self.clock = clock

    def record(
        self,
        group_id: str,
        user_id: str,
        granted: bool,
        visibility: Union[VisibilityMode, str] = VisibilityMode.COUNTS,
        recorded_by: Optional[str] = None,
        source: str = "settings",
        notes: Optional[str] = None,
    ) -> ConsentLogEntry:
        """
        Append a consent decision for a group member.

        Raises:
            NotFound: If the group does not exist
            ValidationError: If the user is not a member of the group
            AppendFailure: If the consent log cannot be written
        """
        if self.members.group(group_id) is None:
            raise NotFound(f"Group not found: {group_id}", resource="group")
        if self.members.membership(group_id, user_id) is None:
            raise ValidationError(
                "Consent can only be recorded for group members",
                errors={"user_id": "not a member of this group"},
            )

        entry = ConsentLogEntry(
            group_id=group_id,
            user_id=user_id,
            recorded_by=recorded_by or user_id,
            action=ConsentAction.GRANTED if granted else ConsentAction.REVOKED,
            visibility=VisibilityMode(visibility),
            source=source,
            notes=notes,
            recorded_at=self.clock(),
        )
        self.store.consents.append(entry)
        logger.info(
            f"Consent {entry.action.value} ({entry.visibility.value}) for {user_id} "
            f"in group {group_id} by {entry.recorded_by}"
        )
        return entry

    def current(self, group_id: str) -> dict[str, ConsentLogEntry]:
        """Latest consent entry per user."""
        latest: dict[str, ConsentLogEntry] = {}
        for entry in self.store.consents.filter(lambda e: e.group_id == group_id):
            latest[entry.user_id] = entry
        return latest

    def allows(self, group_id: str, user_id: str, visibility: Union[VisibilityMode, str]) -> bool:
        entry = self.current(group_id).get(user_id)
        if entry is None or entry.action != ConsentAction.GRANTED:
            return False
        if VisibilityMode(visibility) == VisibilityMode.DETAILS:
            return entry.visibility == VisibilityMode.DETAILS
        return True

    def details_consent(self, group_id: str) -> set[str]:
        """Users whose current consent grants details."""
        return {
            user_id for user_id, entry in self.current(group_id).items()
            if entry.action == ConsentAction.GRANTED and entry.visibility == VisibilityMode.DETAILS
        }

    def statuses(self, group_id: str) -> list[ConsentStatus]:
        """Current consent status of every group member."""
        latest = self.current(group_id)
        statuses = []
        for member in self.members.members(group_id):
            entry = latest.get(member.user_id)
            if entry is None:
                statuses.append(ConsentStatus(
                    user_id=member.user_id,
                    display_name=member.display_name,
                    status="unknown",
                ))
                continue
            statuses.append(ConsentStatus(
                user_id=member.user_id,
                display_name=member.display_name,
                status=entry.action.value,
                visibility=entry.visibility,
                recorded_at=entry.recorded_at,
            ))
        return statuses

    def pending(self, group_id: str) -> list[str]:
        """Members with no consent entry or whose latest entry is a revocation."""
        return [s.user_id for s in self.statuses(group_id) if s.is_pending]

    def snapshot(self, group_id: str) -> dict[str, dict[str, Any]]:
        """Per-member consent state, frozen into a share at creation."""
        return {
            s.user_id: {
                "status": s.status,
                "visibility": s.visibility.value if s.visibility else None,
                "recorded_at": s.recorded_at.isoformat() if s.recorded_at else None,
            }
            for s in self.statuses(group_id)
        }

    def audit_trail(self, group_id: str, limit: int = 50) -> list[ConsentLogEntry]:
        """Newest-first consent history."""
        entries = self.store.consents.filter(lambda e: e.group_id == group_id)
        return list(reversed(entries))[:limit]


__all__ = [
    "ConsentStatus",
    "ConsentLedger",
]
