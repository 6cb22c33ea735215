"""
Viewer-scoped projections of a Summary.

Public and privileged views are separate types. The public types have no
``acknowledged_count`` field and their timeline entries have no ``detail``
field, so a privileged value can never leak through a public response: the
field simply does not exist on the model being serialized.

Key components:
- PublicSummaryView / PrivilegedSummaryView: interactive views tagged by
  ``audience``
- SharedSummary: the consent-filtered projection served to share links and
  exports
- ResolvedShareView: the complete share resolution payload
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import AdjustmentReason, Faction, ShareState, UrgencyTier, VisibilityMode

SHROUDED_LABEL = "Shrouded presence"


# ---------------------------------------------------------------------------
# Timelines
# ---------------------------------------------------------------------------

class PublicTimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    summary_text: str


class TimelineDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor: Optional[str] = None
    previous_rounds: Optional[int] = None
    new_rounds: Optional[int] = None
    delta: int = 0
    reason: AdjustmentReason
    description: str = ""
    recorded_at: datetime


class PrivilegedTimelineEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary_text: str
    detail: TimelineDetail


# ---------------------------------------------------------------------------
# Interactive views
# ---------------------------------------------------------------------------

class PublicConditionView(BaseModel):
    """Condition as seen by players and observers."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str
    label: str
    urgency: UrgencyTier
    rounds_remaining: Optional[int] = None
    rounds_hint: str
    summary_text: str
    acknowledged_by_viewer: bool = False
    timeline: tuple[PublicTimelineEntry, ...] = ()


class PrivilegedConditionView(BaseModel):
    """Condition as seen by owners and dungeon masters."""
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    urgency: UrgencyTier
    rounds_remaining: Optional[int] = None
    rounds_hint: str
    summary_text: str
    acknowledged_by_viewer: bool = False
    acknowledged_count: int = 0
    timeline: tuple[PrivilegedTimelineEntry, ...] = ()


class PublicTokenView(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    token_name: str
    faction: Faction
    hidden: bool = False
    conditions: tuple[PublicConditionView, ...] = ()


class PrivilegedTokenView(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    token_name: str
    faction: Faction
    map_id: str
    hidden: bool = False
    owner_user_id: Optional[str] = None
    conditions: tuple[PrivilegedConditionView, ...] = ()


class PublicSummaryView(BaseModel):
    model_config = ConfigDict(frozen=True)

    audience: Literal["public"] = "public"
    group_id: str
    generated_at: datetime
    viewer_id: str
    entries: tuple[PublicTokenView, ...] = ()


class PrivilegedSummaryView(BaseModel):
    model_config = ConfigDict(frozen=True)

    audience: Literal["privileged"] = "privileged"
    group_id: str
    generated_at: datetime
    viewer_id: str
    entries: tuple[PrivilegedTokenView, ...] = ()


SummaryView = Annotated[
    Union[PublicSummaryView, PrivilegedSummaryView],
    Field(discriminator="audience"),
]


# ---------------------------------------------------------------------------
# Shared (external) views
# ---------------------------------------------------------------------------

class SharedConditionCounts(BaseModel):
    """Counts-only condition: no rounds, no timeline."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    visibility: Literal["counts"] = "counts"
    key: str
    label: str
    urgency: UrgencyTier


class SharedConditionDetails(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    visibility: Literal["details"] = "details"
    key: str
    label: str
    urgency: UrgencyTier
    rounds_remaining: Optional[int] = None
    summary_text: str
    timeline: tuple[PublicTimelineEntry, ...] = ()


SharedCondition = Annotated[
    Union[SharedConditionCounts, SharedConditionDetails],
    Field(discriminator="visibility"),
]


class SharedTokenView(BaseModel):
    model_config = ConfigDict(frozen=True)

    token_id: str
    token_name: str
    faction: Faction
    conditions: tuple[SharedCondition, ...] = ()


class SharedSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    generated_at: Optional[datetime] = None
    visibility_mode: VisibilityMode
    entries: tuple[SharedTokenView, ...] = ()


class ShareStateView(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ShareState
    redacted: bool
    access_count: int
    created_at: datetime
    expires_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    visibility_mode: VisibilityMode
    preset_key: Optional[str] = None


class CatchUpPrompt(BaseModel):
    model_config = ConfigDict(frozen=True)

    excerpt: str
    generated_at: datetime


class ResolvedShareView(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: SharedSummary
    share: ShareStateView
    catch_up_prompts: tuple[CatchUpPrompt, ...] = ()


__all__ = [
    "SHROUDED_LABEL",
    "PublicTimelineEntry",
    "TimelineDetail",
    "PrivilegedTimelineEntry",
    "PublicConditionView",
    "PrivilegedConditionView",
    "PublicTokenView",
    "PrivilegedTokenView",
    "PublicSummaryView",
    "PrivilegedSummaryView",
    "SummaryView",
    "SharedConditionCounts",
    "SharedConditionDetails",
    "SharedCondition",
    "SharedTokenView",
    "SharedSummary",
    "ShareStateView",
    "CatchUpPrompt",
    "ResolvedShareView",
]
