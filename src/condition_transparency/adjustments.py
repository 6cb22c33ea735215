"""
Batch timer adjustments.

A batch is a list of ``{token_id, condition, delta | set_to,
expected_rounds?}`` entries. The whole batch is validated before anything
is applied. Each entry is then applied independently: entries that no
longer match the live token are reported as conflicts instead of failing
the batch. Results are clamped to ``[1, max_duration]`` and a result of
zero or less removes the condition from the token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .chronicle import Adjustment, ChronicleService
from .exceptions import ValidationError
from .models import AdjustmentEvent, AdjustmentReason, Summary
from .summary.urgency import MAX_CONDITION_DURATION

if TYPE_CHECKING:
    from .collaborators import TokenRepository
    from .permissions import GroupAccessResolver
    from .summary.projector import SummaryProjector

logger = logging.getLogger("condition-transparency.adjustments")


class AdjustmentRequest(BaseModel):
    token_id: str
    condition: str
    delta: Optional[int] = None
    set_to: Optional[int] = None
    expected_rounds: Optional[int] = None


@dataclass(frozen=True)
class AdjustmentConflict:
    """An entry that was skipped or altered while applying a batch.

    Attributes:
        token_id: Token named by the entry
        condition: Condition named by the entry
        reason: token_missing, condition_missing, timer_absent,
                expected_mismatch or clamped_to_bounds
        expected: Rounds the caller expected, if given
        actual: Rounds found on the live token
    """
    token_id: str
    condition: str
    reason: str
    expected: Optional[int] = None
    actual: Optional[int] = None


@dataclass
class BatchResult:
    applied: list[AdjustmentEvent] = field(default_factory=list)
    conflicts: list[AdjustmentConflict] = field(default_factory=list)
    summary: Optional[Summary] = None

    def as_response(self) -> dict[str, Any]:
        return {
            "applied": [
                {
                    "token_id": e.token_id,
                    "condition": e.condition_key,
                    "previous_rounds": e.previous_rounds,
                    "new_rounds": e.new_rounds,
                    "delta": e.delta,
                    "summary_text": e.summary_text,
                }
                for e in self.applied
            ],
            "conflicts": [
                {
                    "token_id": c.token_id,
                    "condition": c.condition,
                    "reason": c.reason,
                    "expected": c.expected,
                    "actual": c.actual,
                }
                for c in self.conflicts
            ],
            "summary_generated_at": self.summary.generated_at.isoformat() if self.summary else None,
        }


def validate_batch(entries: list[Union[AdjustmentRequest, dict[str, Any]]]) -> list[AdjustmentRequest]:
    """
    Validate every entry of a batch.

    Raises:
        ValidationError: With one error per offending entry index
    """
    if not entries:
        raise ValidationError("No adjustments supplied", errors={"adjustments": "must not be empty"})

    requests: list[AdjustmentRequest] = []
    errors: dict[str, str] = {}
    for index, entry in enumerate(entries):
        field_name = f"adjustments.{index}"
        try:
            request = entry if isinstance(entry, AdjustmentRequest) else AdjustmentRequest.model_validate(entry)
        except PydanticValidationError as e:
            errors[field_name] = "; ".join(err["msg"] for err in e.errors())
            continue

        if (request.delta is None) == (request.set_to is None):
            errors[field_name] = "exactly one of delta or set_to is required"
        elif request.delta == 0:
            errors[field_name] = "delta must not be zero"
        else:
            requests.append(request)

    if errors:
        raise ValidationError("Invalid adjustment batch", errors=errors)
    return requests


class BatchAdjuster:
    """
    Applies validated adjustment batches to live tokens.

    Attributes:
        tokens: Token collaborator receiving the new durations
        chronicle: Records one event per applied change
        projector: Refreshed once after any change is applied
        access: Role checks; only privileged members may adjust
    """

    def __init__(
        self,
        tokens: "TokenRepository",
        chronicle: ChronicleService,
        projector: "SummaryProjector",
        access: "GroupAccessResolver",
        max_duration: int = MAX_CONDITION_DURATION,
    ) -> None:
        self.tokens = tokens
        self.chronicle = chronicle
        self.projector = projector
        self.access = access
        self.max_duration = max_duration

    def apply(
        self,
        group_id: str,
        actor_id: str,
        entries: list[Union[AdjustmentRequest, dict[str, Any]]],
    ) -> BatchResult:
        """
        Validate and apply a batch.

        Raises:
            Forbidden: If the actor is not an owner or dungeon master
            ValidationError: If any entry is malformed (nothing is applied)
        """
        self.access.require_privileged(group_id, actor_id)
        requests = validate_batch(entries)
        result = BatchResult()

        for request in requests:
            event = self._apply_one(group_id, actor_id, request, result)
            if event is not None:
                result.applied.append(event)

        for conflict in result.conflicts:
            logger.warning(
                f"Adjustment conflict in group {group_id}: token={conflict.token_id} "
                f"condition={conflict.condition} reason={conflict.reason}"
            )

        if result.applied:
            result.summary = self.projector.refresh(group_id, "batch_adjustment").summary
        return result

    def _apply_one(
        self,
        group_id: str,
        actor_id: str,
        request: AdjustmentRequest,
        result: BatchResult,
    ) -> Optional[AdjustmentEvent]:
        token = self.tokens.get_token(group_id, request.token_id)
        if token is None:
            result.conflicts.append(AdjustmentConflict(request.token_id, request.condition, "token_missing"))
            return None
        if not token.is_active(request.condition):
            result.conflicts.append(AdjustmentConflict(request.token_id, request.condition, "condition_missing"))
            return None

        current = token.rounds_for(request.condition)
        if request.expected_rounds is not None and request.expected_rounds != current:
            result.conflicts.append(AdjustmentConflict(
                request.token_id, request.condition, "expected_mismatch",
                expected=request.expected_rounds, actual=current,
            ))
            return None

        if request.delta is not None:
            if current is None:
                result.conflicts.append(AdjustmentConflict(request.token_id, request.condition, "timer_absent"))
                return None
            target = current + request.delta
        else:
            target = request.set_to

        if target <= 0:
            new_rounds = None
        else:
            new_rounds = max(1, min(target, self.max_duration))
            if new_rounds != target:
                result.conflicts.append(AdjustmentConflict(
                    request.token_id, request.condition, "clamped_to_bounds",
                    expected=target, actual=new_rounds,
                ))

        if new_rounds == current:
            return None

        events = self.chronicle.record(
            group_id,
            request.token_id,
            [Adjustment(request.condition, current, new_rounds)],
            AdjustmentReason.MANUAL_ADJUSTMENT,
            actor_id=actor_id,
            context={
                "source": "batch_adjustment",
                "delta": request.delta,
                "set_to": request.set_to,
                "expected_rounds": request.expected_rounds,
            },
        )
        self.tokens.update_durations(group_id, request.token_id, {request.condition: new_rounds})
        return events[0] if events else None


__all__ = [
    "AdjustmentRequest",
    "AdjustmentConflict",
    "BatchResult",
    "validate_batch",
    "BatchAdjuster",
]
