"""
Export dataset construction.

The dataset is rebuilt from current state every time an export runs and
applies the same redaction as share links: consent-filtered summary,
chronicle rows only for tokens shown in detail, round numbers only where
they are public, no actor attribution and no share tokens.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from ..chronicle import public_entry
from ..models import Clock, ExportRequest, VisibilityMode, utcnow
from ..presentation import exposes_rounds, shared_summary

if TYPE_CHECKING:
    from ..chronicle import ChronicleService
    from ..sharing.consent import ConsentLedger
    from ..storage import TransparencyStore
    from ..summary.projector import SummaryProjector


def parse_since(value: Any) -> Optional[datetime]:
    """
    Parse the optional ``since`` filter.

    Raises:
        ValueError: If the value is not an ISO 8601 timestamp
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ExportDatasetBuilder:
    """Assembles the redacted export dataset for one export request."""

    def __init__(
        self,
        projector: "SummaryProjector",
        store: "TransparencyStore",
        consent: "ConsentLedger",
        chronicle: "ChronicleService",
        clock: Clock = utcnow,
    ) -> None:
        self.projector = projector
        self.store = store
        self.consent = consent
        self.chronicle = chronicle
        self.clock = clock

    def build(self, export: ExportRequest) -> dict[str, Any]:
        group_id = export.group_id
        details = export.visibility_mode == VisibilityMode.DETAILS
        since = parse_since(export.filters.get("since"))
        token_filter = set(export.filters.get("token_ids") or [])

        summary = self.projector.current(group_id)
        details_users = self.consent.details_consent(group_id)
        timelines = self.chronicle.public_timelines(summary) if details else {}
        projected = shared_summary(summary, export.visibility_mode, details_users, timelines)
        if token_filter:
            projected = projected.model_copy(update={
                "entries": tuple(e for e in projected.entries if e.token_id in token_filter)
            })

        detailed_tokens = {
            entry.token_id
            for entry in projected.entries
            if any(c.visibility == "details" for c in entry.conditions)
        }
        exposed_tokens = {entry.token_id for entry in summary.entries if exposes_rounds(entry)}

        return {
            "export_id": export.id,
            "group_id": group_id,
            "format": export.format.value,
            "visibility_mode": export.visibility_mode.value,
            "generated_at": self.clock().isoformat(),
            "summary": projected.model_dump(mode="json"),
            "acknowledgements": self._acknowledgements(
                group_id, summary.generated_at, since, token_filter, details_users if details else None
            ),
            "chronicle": self._chronicle(group_id, since, detailed_tokens, exposed_tokens),
            "consents": [status.as_dict() for status in self.consent.statuses(group_id)],
            "shares": self._shares(group_id),
        }

    def _acknowledgements(
        self,
        group_id: str,
        generated_at: datetime,
        since: Optional[datetime],
        token_filter: set[str],
        details_users: Optional[set[str]],
    ) -> list[dict[str, Any]]:
        users_by_pair: dict[tuple[str, str], set[str]] = {}
        for ack in self.store.acknowledgements(group_id, generated_at):
            if since is not None and ack.acknowledged_at < since:
                continue
            if token_filter and ack.token_id not in token_filter:
                continue
            users_by_pair.setdefault((ack.token_id, ack.condition_key), set()).add(ack.user_id)

        rows = []
        for (token_id, condition_key), users in sorted(users_by_pair.items()):
            row: dict[str, Any] = {
                "token_id": token_id,
                "condition_key": condition_key,
                "acknowledged_count": len(users),
            }
            if details_users is not None:
                row["acknowledged_by"] = sorted(users & details_users)
            rows.append(row)
        return rows

    def _chronicle(
        self,
        group_id: str,
        since: Optional[datetime],
        detailed_tokens: set[str],
        exposed_tokens: set[str],
    ) -> list[dict[str, Any]]:
        """Chronicle rows for tokens shown in detail; round numbers only where public."""
        rows = []
        for event in self.chronicle.events_for(group_id, since=since):
            if event.token_id not in detailed_tokens:
                continue
            exposed = event.token_id in exposed_tokens
            row: dict[str, Any] = {
                "token_id": event.token_id,
                "condition_key": event.condition_key,
                "reason": event.reason.value,
                "summary_text": public_entry(event, exposed).summary_text,
                "recorded_at": event.recorded_at.isoformat(),
            }
            if exposed:
                row["previous_rounds"] = event.previous_rounds
                row["new_rounds"] = event.new_rounds
                row["delta"] = event.delta
            rows.append(row)
        return rows

    def _shares(self, group_id: str) -> list[dict[str, Any]]:
        return [
            {
                "share_id": share.id,
                "visibility_mode": share.visibility_mode.value,
                "created_at": share.created_at.isoformat(),
                "expires_at": share.expires_at.isoformat() if share.expires_at else None,
                "revoked_at": share.revoked_at.isoformat() if share.revoked_at else None,
                "access_count": share.access_count,
                "last_accessed_at": share.last_accessed_at.isoformat() if share.last_accessed_at else None,
            }
            for share in self.store.shares_for(group_id)
        ]


__all__ = ["parse_since", "ExportDatasetBuilder"]
