"""
Chronicle of condition-timer adjustments.

Every change to a timer is appended to the adjustments log as an immutable
AdjustmentEvent carrying two descriptions: a public one that is safe for any
viewer of an allied token ("Timer extended by 2 rounds.") and an attributed
one for privileged viewers ("Manual adjustment by Mira: 3 → 5 rounds").
Public timelines for hostile or hidden tokens are rendered again without
numbers ("Timer extended.") so exact rounds never leave through history.

Key components:
- Adjustment: a single previous -> new change handed to record()
- ChronicleService: records events and hydrates views with timelines
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union

from .models import AdjustmentEvent, AdjustmentReason, Clock, Summary, utcnow
from .presentation import exposes_rounds
from .views import (
    PrivilegedSummaryView,
    PrivilegedTimelineEntry,
    PublicSummaryView,
    PublicTimelineEntry,
    TimelineDetail,
)

if TYPE_CHECKING:
    from .collaborators import MembershipDirectory
    from .storage import TransparencyStore

logger = logging.getLogger("condition-transparency.chronicle")

AUTOMATED_ACTOR = "Automated process"

REASON_LABELS = {
    AdjustmentReason.MANUAL_ADJUSTMENT: "Manual adjustment",
    AdjustmentReason.TURN_TICK: "Turn tick",
    AdjustmentReason.EXPIRY: "Expiry",
}


@dataclass(frozen=True)
class Adjustment:
    condition_key: str
    previous_rounds: Optional[int]
    new_rounds: Optional[int]


def _rounds(n: int) -> str:
    return f"{n} round" if n == 1 else f"{n} rounds"


def public_summary_text(
    previous: Optional[int],
    new: Optional[int],
    reason: AdjustmentReason,
    expose_numbers: bool = True,
) -> str:
    """Describe a change without attribution.

    With ``expose_numbers`` off the text carries no round counts, for
    tokens whose exact timers are not public.
    """
    if new is None:
        return "Timer expired." if reason == AdjustmentReason.EXPIRY else "Timer cleared."
    if previous is None:
        return f"Timer started at {_rounds(new)}." if expose_numbers else "Timer started."
    if new > previous:
        return f"Timer extended by {_rounds(new - previous)}." if expose_numbers else "Timer extended."
    if reason == AdjustmentReason.TURN_TICK:
        return f"Timer ticked down to {_rounds(new)}." if expose_numbers else "Countdown advanced."
    return f"Timer reduced by {_rounds(previous - new)}." if expose_numbers else "Timer reduced."


def detail_text(
    previous: Optional[int],
    new: Optional[int],
    reason: AdjustmentReason,
    actor_name: Optional[str],
) -> str:
    """Describe a change with attribution, for privileged viewers."""
    before = "none" if previous is None else str(previous)
    after = "none" if new is None else str(new)
    return f"{REASON_LABELS[reason]} by {actor_name or AUTOMATED_ACTOR}: {before} → {after} rounds"


def public_entry(event: AdjustmentEvent, expose_numbers: bool) -> PublicTimelineEntry:
    if expose_numbers:
        return PublicTimelineEntry(summary_text=event.summary_text)
    return PublicTimelineEntry(summary_text=public_summary_text(
        event.previous_rounds, event.new_rounds, event.reason, expose_numbers=False
    ))


class ChronicleService:
    """
    Append-only timer history with role-scoped timelines.

    Attributes:
        store: Transparency store holding the adjustments log
        members: Membership directory, used to resolve actor display names
        timeline_limit: Entries attached per condition when hydrating
    """

    def __init__(
        self,
        store: "TransparencyStore",
        members: "MembershipDirectory",
        timeline_limit: int = 5,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.members = members
        self.timeline_limit = timeline_limit
        self.clock = clock

    def record(
        self,
        group_id: str,
        token_id: str,
        adjustments: list[Adjustment],
        reason: Union[AdjustmentReason, str],
        actor_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> list[AdjustmentEvent]:
        """
        Append one event per effective adjustment.

        Adjustments whose previous and new rounds are equal are skipped.

        Returns:
            The appended events, in input order

        Raises:
            AppendFailure: If the adjustments log cannot be written; events
                           appended before the failure remain
        """
        reason = AdjustmentReason(reason)
        actor_name = self._actor_name(group_id, actor_id)
        clean_context = {k: v for k, v in (context or {}).items() if v is not None}
        recorded_at = self.clock()

        events: list[AdjustmentEvent] = []
        for adjustment in adjustments:
            previous, new = adjustment.previous_rounds, adjustment.new_rounds
            if previous == new:
                continue
            event = AdjustmentEvent(
                group_id=group_id,
                token_id=token_id,
                condition_key=adjustment.condition_key,
                previous_rounds=previous,
                new_rounds=new,
                delta=(new or 0) - (previous or 0),
                reason=reason,
                context=clean_context,
                actor_id=actor_id,
                actor_name=actor_name,
                summary_text=public_summary_text(previous, new, reason),
                detail_text=detail_text(previous, new, reason, actor_name),
                recorded_at=recorded_at,
            )
            events.append(self.store.adjustments.append(event))

        if events:
            logger.info(
                f"Chronicle recorded {len(events)} event(s) for token {token_id} "
                f"in group {group_id} ({reason.value})"
            )
        return events

    def _actor_name(self, group_id: str, actor_id: Optional[str]) -> Optional[str]:
        if actor_id is None:
            return None
        membership = self.members.membership(group_id, actor_id)
        if membership is not None and membership.display_name:
            return membership.display_name
        return actor_id

    def events_for(self, group_id: str, since: Optional[datetime] = None) -> list[AdjustmentEvent]:
        """All events for a group, oldest first."""
        return self.store.adjustments.filter(
            lambda e: e.group_id == group_id and (since is None or e.recorded_at >= since)
        )

    def _newest_by_pair(self, group_id: str) -> dict[tuple[str, str], list[AdjustmentEvent]]:
        grouped: dict[tuple[str, str], list[AdjustmentEvent]] = defaultdict(list)
        for event in reversed(self.events_for(group_id)):
            pair = (event.token_id, event.condition_key)
            if len(grouped[pair]) < self.timeline_limit:
                grouped[pair].append(event)
        return grouped

    def public_timelines(self, summary: Summary) -> dict[tuple[str, str], list[PublicTimelineEntry]]:
        """Text-only timelines, newest first, for external projections of ``summary``."""
        exposed = {entry.token_id for entry in summary.entries if exposes_rounds(entry)}
        return {
            pair: [public_entry(e, pair[0] in exposed) for e in events]
            for pair, events in self._newest_by_pair(summary.group_id).items()
        }

    def hydrate(
        self,
        view: Union[PublicSummaryView, PrivilegedSummaryView],
        group_id: str,
    ) -> Union[PublicSummaryView, PrivilegedSummaryView]:
        """
        Attach a newest-first timeline to every condition of a view.

        Privileged views get entries with a ``detail`` block; public views
        get text-only entries, number-free unless the token exposes rounds.
        """
        grouped = self._newest_by_pair(group_id)
        privileged = isinstance(view, PrivilegedSummaryView)

        tokens = []
        for token in view.entries:
            expose = exposes_rounds(token)
            conditions = []
            for condition in token.conditions:
                events = grouped.get((token.token_id, condition.key), [])
                if privileged:
                    timeline = tuple(self._privileged_entry(e) for e in events)
                else:
                    timeline = tuple(public_entry(e, expose) for e in events)
                conditions.append(condition.model_copy(update={"timeline": timeline}))
            tokens.append(token.model_copy(update={"conditions": tuple(conditions)}))
        return view.model_copy(update={"entries": tuple(tokens)})

    @staticmethod
    def _privileged_entry(event: AdjustmentEvent) -> PrivilegedTimelineEntry:
        return PrivilegedTimelineEntry(
            summary_text=event.summary_text,
            detail=TimelineDetail(
                actor=event.actor_name or AUTOMATED_ACTOR,
                previous_rounds=event.previous_rounds,
                new_rounds=event.new_rounds,
                delta=event.delta,
                reason=event.reason,
                description=event.detail_text,
                recorded_at=event.recorded_at,
            ),
        )


__all__ = [
    "AUTOMATED_ACTOR",
    "Adjustment",
    "public_summary_text",
    "public_entry",
    "detail_text",
    "ChronicleService",
]
