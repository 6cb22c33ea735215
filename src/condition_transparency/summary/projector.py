"""
Summary projector: builds, caches and diffs condition-timer summaries.

The projector reads live token state through a TokenRepository, produces an
immutable Summary per group, and keeps the latest one in a SummaryCache.
``refresh`` compares the new generation with the cached one and hands every
escalation (strict urgency tier increase for a token/condition pair) to the
escalation sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

from ..models import (
    Clock,
    ConditionSummary,
    Escalation,
    Summary,
    TokenSummary,
    UrgencyTier,
    utcnow,
)
from .cache import SummaryCache
from .urgency import MAX_CONDITION_DURATION, UrgencyPolicy, describe, label_for

if TYPE_CHECKING:
    from ..collaborators import TokenRepository

logger = logging.getLogger("condition-transparency.summary")


class EscalationSink(Protocol):
    def notify(self, escalations: list[Escalation]) -> object: ...


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of a refresh.

    Attributes:
        summary: The newly cached summary
        escalations: Tier increases found against the previous generation
        reason: Why the refresh was triggered
    """
    summary: Summary
    escalations: list[Escalation] = field(default_factory=list)
    reason: str = "manual"


def diff_summaries(previous: Optional[Summary], current: Summary) -> list[Escalation]:
    """
    Find urgency escalations between two generations.

    A pair that is new in ``current`` is compared against the normal tier,
    so a condition that appears already at warning or critical escalates.
    With no previous generation every pair is new. Unchanged or decreasing
    tiers never escalate.
    """
    before = previous.pairs() if previous is not None else {}
    escalations: list[Escalation] = []

    for entry in current.entries:
        for condition in entry.conditions:
            prior = before.get((entry.token_id, condition.key))
            baseline = prior.urgency if prior is not None else UrgencyTier.NORMAL
            if condition.urgency.rank <= baseline.rank:
                continue
            escalations.append(Escalation(
                group_id=current.group_id,
                token_id=entry.token_id,
                token_name=entry.token_name,
                faction=entry.faction,
                hidden=entry.hidden,
                condition_key=condition.key,
                condition_label=condition.label,
                previous_tier=prior.urgency if prior is not None else None,
                new_tier=condition.urgency,
                rounds_remaining=condition.rounds_remaining,
                generated_at=current.generated_at,
            ))

    return escalations


class SummaryProjector:
    """
    Point-in-time condition-timer projection with cache-aside access.

    Attributes:
        tokens: Live token state collaborator
        cache: Summary cache keyed by group id
        policy: Urgency thresholds
        notifier: Optional escalation sink invoked by refresh()
    """

    def __init__(
        self,
        tokens: "TokenRepository",
        cache: SummaryCache,
        policy: Optional[UrgencyPolicy] = None,
        notifier: Optional[EscalationSink] = None,
        clock: Clock = utcnow,
        max_duration: int = MAX_CONDITION_DURATION,
    ) -> None:
        self.tokens = tokens
        self.cache = cache
        self.policy = policy or UrgencyPolicy()
        self.notifier = notifier
        self.clock = clock
        self.max_duration = max_duration

    def project(self, group_id: str) -> Summary:
        """Build a fresh summary from live token state without touching the cache."""
        entries: list[TokenSummary] = []

        for token in self.tokens.tokens_for_group(group_id):
            conditions: list[ConditionSummary] = []
            for key in token.active_conditions():
                rounds = token.rounds_for(key)
                if rounds is not None:
                    rounds = min(rounds, self.max_duration)
                tier = self.policy.tier_for(rounds)
                conditions.append(ConditionSummary(
                    key=key,
                    label=label_for(key),
                    rounds_remaining=rounds,
                    urgency=tier,
                    summary_text=describe(key, token.name, tier),
                ))

            if not conditions:
                continue

            conditions.sort(key=lambda c: (-c.urgency.rank, c.label))
            entries.append(TokenSummary(
                token_id=token.token_id,
                token_name=token.name,
                faction=token.faction,
                map_id=token.map_id,
                hidden=token.hidden,
                owner_user_id=token.owner_user_id,
                conditions=tuple(conditions),
            ))

        entries.sort(key=lambda e: (-e.conditions[0].urgency.rank, e.token_name))
        return Summary(group_id=group_id, generated_at=self.clock(), entries=tuple(entries))

    def refresh(self, group_id: str, reason: str = "manual") -> RefreshResult:
        """
        Recompute, diff against the cached generation and replace it.

        Without a previous generation every warning or critical pair is
        reported; the notifier's debounce markers absorb repeats.

        Args:
            group_id: Group to refresh
            reason: Trigger label for logging (turn_tick, batch_adjustment, ...)

        Returns:
            RefreshResult with the new summary and any escalations
        """
        previous = self.cache.get(group_id, allow_stale=True)
        summary = self.project(group_id)
        escalations = diff_summaries(previous, summary)

        self.cache.put(group_id, summary)
        logger.info(
            f"condition_timer_summary_refreshed group={group_id} reason={reason} "
            f"entries={len(summary.entries)} escalations={len(escalations)}"
        )

        if escalations and self.notifier is not None:
            self.notifier.notify(escalations)

        return RefreshResult(summary=summary, escalations=escalations, reason=reason)

    def current(self, group_id: str) -> Summary:
        """Return the cached summary, computing and caching one on a miss."""
        cached = self.cache.get(group_id)
        if cached is not None:
            return cached

        logger.info(f"condition_timer_summary_cache_miss group={group_id}")
        summary = self.project(group_id)
        self.cache.put(group_id, summary)
        return summary

    def invalidate(self, group_id: str) -> None:
        self.cache.invalidate(group_id)


__all__ = [
    "EscalationSink",
    "RefreshResult",
    "diff_summaries",
    "SummaryProjector",
]
