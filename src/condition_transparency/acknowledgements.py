"""
Acknowledgement tracking for condition timers.

An acknowledgement records that a user has seen a condition at a specific
summary generation. Rows are unique per (group, token, user, condition);
resubmitting the same acknowledgement returns the stored row unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union

from .exceptions import ValidationError
from .models import AckSource, Acknowledgement, Clock, Summary, utcnow
from .presentation import privileged_view, public_view
from .views import PrivilegedSummaryView, PublicSummaryView

if TYPE_CHECKING:
    from .collaborators import TokenRepository
    from .storage import TransparencyStore

logger = logging.getLogger("condition-transparency.acknowledgements")


@dataclass(frozen=True)
class AckResult:
    """Result of an acknowledgement submission.

    Attributes:
        acknowledgement: The stored row
        acknowledged_count: Distinct users who acknowledged this condition
                            for the same summary generation
        created: False when the call was a duplicate no-op
    """
    acknowledgement: Acknowledgement
    acknowledged_count: int
    created: bool

    def as_response(self, privileged: bool) -> dict[str, Any]:
        """Response body; the count is only included for privileged viewers."""
        ack = self.acknowledgement
        body: dict[str, Any] = {
            "token_id": ack.token_id,
            "condition_key": ack.condition_key,
            "summary_generated_at": ack.summary_generated_at.isoformat(),
            "acknowledged_at": ack.acknowledged_at.isoformat(),
            "source": ack.source.value,
            "acknowledged_by_viewer": True,
        }
        if privileged:
            body["acknowledged_count"] = self.acknowledged_count
        return {"acknowledgement": body}


class AcknowledgementTracker:
    """
    Records acknowledgements and hydrates summaries with them.

    Attributes:
        store: Transparency store holding the acknowledgement table
        tokens: Live token state, used to reject stale clicks
    """

    def __init__(
        self,
        store: "TransparencyStore",
        tokens: "TokenRepository",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.clock = clock

    def acknowledge(
        self,
        group_id: str,
        token_id: str,
        condition_key: str,
        summary_generated_at: datetime,
        user_id: str,
        source: Union[AckSource, str] = AckSource.ONLINE,
        queued_at: Optional[datetime] = None,
    ) -> AckResult:
        """
        Upsert an acknowledgement.

        Args:
            group_id: Group the token belongs to
            token_id: Token carrying the condition
            condition_key: Condition being acknowledged
            summary_generated_at: Generation the user was looking at
            user_id: Acknowledging user
            source: "online", or "offline" for queued client submissions
            queued_at: When an offline client queued the acknowledgement

        Returns:
            AckResult with the stored row

        Raises:
            ValidationError: If the token is unknown or the condition is no
                             longer active on it
        """
        token = self.tokens.get_token(group_id, token_id)
        if token is None:
            raise ValidationError(
                "Token is not part of this group",
                errors={"token_id": "unknown token"},
            )
        if not token.is_active(condition_key):
            raise ValidationError(
                "Condition is no longer active on this token",
                errors={"condition_key": "condition is not active"},
            )

        ack = Acknowledgement(
            group_id=group_id,
            token_id=token_id,
            user_id=user_id,
            condition_key=condition_key,
            summary_generated_at=summary_generated_at,
            acknowledged_at=self.clock(),
            source=AckSource(source),
            queued_at=queued_at,
        )
        stored, created = self.store.upsert_acknowledgement(ack)
        count = self.count_for(group_id, token_id, condition_key, stored.summary_generated_at)

        if created:
            logger.info(
                f"Acknowledgement recorded: group={group_id} token={token_id} "
                f"condition={condition_key} user={user_id} source={stored.source.value}"
            )
        return AckResult(acknowledgement=stored, acknowledged_count=count, created=created)

    def count_for(
        self,
        group_id: str,
        token_id: str,
        condition_key: str,
        summary_generated_at: datetime,
    ) -> int:
        rows = self.store.acknowledgements(group_id, summary_generated_at)
        return len({
            a.user_id for a in rows
            if a.token_id == token_id and a.condition_key == condition_key
        })

    def hydrate(
        self,
        summary: Summary,
        group_id: str,
        viewer_id: str,
        privileged: bool,
    ) -> Union[PublicSummaryView, PrivilegedSummaryView]:
        """
        Project a summary for a viewer with acknowledgement data attached.

        Every condition gets ``acknowledged_by_viewer``; only the privileged
        variant carries ``acknowledged_count``. Only acknowledgements for
        this exact generation count.
        """
        rows = self.store.acknowledgements(group_id, summary.generated_at)
        viewer_pairs = {(a.token_id, a.condition_key) for a in rows if a.user_id == viewer_id}

        if not privileged:
            return public_view(summary, viewer_id, viewer_pairs)

        users_by_pair: dict[tuple[str, str], set[str]] = {}
        for a in rows:
            users_by_pair.setdefault((a.token_id, a.condition_key), set()).add(a.user_id)
        counts = {pair: len(users) for pair, users in users_by_pair.items()}
        return privileged_view(summary, viewer_id, viewer_pairs, counts)


__all__ = [
    "AckResult",
    "AcknowledgementTracker",
]
