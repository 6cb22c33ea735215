"""
Projection functions from a Summary to viewer-scoped views.

Key components:
- public_view / privileged_view: interactive views for group members
- shared_summary: the consent-filtered projection used by share links and
  exports
- SummaryPresenter: resolves the viewer's role and composes acknowledgement
  and chronicle hydration for the interactive view
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Union

from .models import Escalation, Faction, Summary, TokenSummary, VisibilityMode
from .summary.urgency import UrgencyPolicy, describe
from .views import (
    SHROUDED_LABEL,
    PrivilegedConditionView,
    PrivilegedSummaryView,
    PrivilegedTokenView,
    PublicConditionView,
    PublicSummaryView,
    PublicTimelineEntry,
    PublicTokenView,
    SharedConditionCounts,
    SharedConditionDetails,
    SharedSummary,
    SharedTokenView,
)

if TYPE_CHECKING:
    from .acknowledgements import AcknowledgementTracker
    from .chronicle import ChronicleService
    from .permissions import GroupAccessResolver
    from .summary.projector import SummaryProjector

logger = logging.getLogger("condition-transparency")

Pair = tuple[str, str]


def exposes_rounds(entry: Union[TokenSummary, PublicTokenView, Escalation]) -> bool:
    """Exact rounds are public only for visible allied or neutral tokens."""
    return not entry.hidden and entry.faction in (Faction.ALLIED, Faction.NEUTRAL)


def public_name(entry: Union[TokenSummary, Escalation]) -> str:
    return SHROUDED_LABEL if entry.hidden else entry.token_name


def public_view(summary: Summary, viewer_id: str, acknowledged: set[Pair]) -> PublicSummaryView:
    """Player/observer view: no acknowledgement counts, rounds only where public."""
    tokens = []
    for entry in summary.entries:
        show_rounds = exposes_rounds(entry)
        name = public_name(entry)
        conditions = tuple(
            PublicConditionView(
                key=c.key,
                label=c.label,
                urgency=c.urgency,
                rounds_remaining=c.rounds_remaining if show_rounds else None,
                rounds_hint=UrgencyPolicy.rounds_hint(c.rounds_remaining),
                summary_text=describe(c.key, name, c.urgency) if entry.hidden else c.summary_text,
                acknowledged_by_viewer=(entry.token_id, c.key) in acknowledged,
            )
            for c in entry.conditions
        )
        tokens.append(PublicTokenView(
            token_id=entry.token_id,
            token_name=name,
            faction=entry.faction,
            hidden=entry.hidden,
            conditions=conditions,
        ))
    return PublicSummaryView(
        group_id=summary.group_id,
        generated_at=summary.generated_at,
        viewer_id=viewer_id,
        entries=tuple(tokens),
    )


def privileged_view(
    summary: Summary,
    viewer_id: str,
    acknowledged: set[Pair],
    counts: dict[Pair, int],
) -> PrivilegedSummaryView:
    """Owner/dungeon master view: real names, exact rounds, acknowledgement counts."""
    tokens = []
    for entry in summary.entries:
        conditions = tuple(
            PrivilegedConditionView(
                key=c.key,
                label=c.label,
                urgency=c.urgency,
                rounds_remaining=c.rounds_remaining,
                rounds_hint=UrgencyPolicy.rounds_hint(c.rounds_remaining),
                summary_text=c.summary_text,
                acknowledged_by_viewer=(entry.token_id, c.key) in acknowledged,
                acknowledged_count=counts.get((entry.token_id, c.key), 0),
            )
            for c in entry.conditions
        )
        tokens.append(PrivilegedTokenView(
            token_id=entry.token_id,
            token_name=entry.token_name,
            faction=entry.faction,
            map_id=entry.map_id,
            hidden=entry.hidden,
            owner_user_id=entry.owner_user_id,
            conditions=conditions,
        ))
    return PrivilegedSummaryView(
        group_id=summary.group_id,
        generated_at=summary.generated_at,
        viewer_id=viewer_id,
        entries=tuple(tokens),
    )


def shared_summary(
    summary: Summary,
    visibility_mode: VisibilityMode,
    details_consent: set[str],
    timelines: Optional[dict[Pair, list[PublicTimelineEntry]]] = None,
) -> SharedSummary:
    """
    Consent-filtered projection for external viewers.

    A token is shown in detail only when the share asks for details, the
    token is visible, and its owner currently grants details consent.
    Tokens without an owner follow the share's mode. Everything else is
    reduced to counts: key, label and urgency.

    Args:
        summary: Summary to project
        visibility_mode: The share's (or export's) requested mode
        details_consent: Users whose latest consent grants details
        timelines: Text-only chronicle entries per (token, condition)
    """
    timelines = timelines or {}
    tokens = []
    for entry in summary.entries:
        detailed = (
            visibility_mode == VisibilityMode.DETAILS
            and not entry.hidden
            and (entry.owner_user_id is None or entry.owner_user_id in details_consent)
        )
        show_rounds = exposes_rounds(entry)
        conditions = []
        for c in entry.conditions:
            if detailed:
                conditions.append(SharedConditionDetails(
                    key=c.key,
                    label=c.label,
                    urgency=c.urgency,
                    rounds_remaining=c.rounds_remaining if show_rounds else None,
                    summary_text=c.summary_text,
                    timeline=tuple(timelines.get((entry.token_id, c.key), [])),
                ))
            else:
                conditions.append(SharedConditionCounts(key=c.key, label=c.label, urgency=c.urgency))
        tokens.append(SharedTokenView(
            token_id=entry.token_id,
            token_name=public_name(entry),
            faction=entry.faction,
            conditions=tuple(conditions),
        ))
    return SharedSummary(
        group_id=summary.group_id,
        generated_at=summary.generated_at,
        visibility_mode=visibility_mode,
        entries=tuple(tokens),
    )


class SummaryPresenter:
    """
    Builds the interactive, viewer-scoped summary.

    Resolves the viewer's role, reads the cached summary and applies
    acknowledgement and chronicle hydration in that order.
    """

    def __init__(
        self,
        projector: "SummaryProjector",
        acknowledgements: "AcknowledgementTracker",
        chronicle: "ChronicleService",
        access: "GroupAccessResolver",
    ) -> None:
        self.projector = projector
        self.acknowledgements = acknowledgements
        self.chronicle = chronicle
        self.access = access

    def present(self, group_id: str, viewer_id: str) -> Union[PublicSummaryView, PrivilegedSummaryView]:
        """
        Raises:
            NotFound: If the group does not exist
            Forbidden: If the viewer is not a group member
        """
        membership = self.access.require_member(group_id, viewer_id)
        summary = self.projector.current(group_id)
        view = self.acknowledgements.hydrate(summary, group_id, viewer_id, membership.is_privileged)
        return self.chronicle.hydrate(view, group_id)


__all__ = [
    "exposes_rounds",
    "public_name",
    "public_view",
    "privileged_view",
    "shared_summary",
    "SummaryPresenter",
]
