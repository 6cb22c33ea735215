"""
Condition-timer summary projection.

Key components:
- SummaryProjector: builds, caches and diffs summaries
- SummaryCache / InMemorySummaryCache: injectable TTL cache
- UrgencyPolicy: rounds -> urgency tier thresholds
"""

from .cache import InMemorySummaryCache, SummaryCache, SummaryCacheStats, cache_key
from .projector import RefreshResult, SummaryProjector, diff_summaries
from .urgency import MAX_CONDITION_DURATION, UrgencyPolicy, describe, label_for

__all__ = [
    "InMemorySummaryCache",
    "SummaryCache",
    "SummaryCacheStats",
    "cache_key",
    "RefreshResult",
    "SummaryProjector",
    "diff_summaries",
    "MAX_CONDITION_DURATION",
    "UrgencyPolicy",
    "describe",
    "label_for",
]
