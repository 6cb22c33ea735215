"""
Quiet-hours window evaluation.

A window is two local times. Equal start and end cover the whole day; a
start after the end wraps past midnight (22:00-06:00).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger("condition-transparency.notifications")


@dataclass(frozen=True)
class QuietHours:
    start: time
    end: time
    timezone: str = "UTC"

    @classmethod
    def from_values(
        cls,
        start: Optional[time],
        end: Optional[time],
        timezone: str = "UTC",
    ) -> Optional["QuietHours"]:
        """Build a window, or None when either bound is missing."""
        if start is None or end is None:
            return None
        return cls(start=start, end=end, timezone=timezone or "UTC")

    def contains_local(self, moment: time) -> bool:
        if self.start == self.end:
            return True
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end

    def contains(self, now: datetime) -> bool:
        """Whether an aware datetime falls inside the window in its timezone."""
        local = now.astimezone(_zone(self.timezone)).time().replace(tzinfo=None)
        return self.contains_local(local)


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return timezone.utc


__all__ = ["QuietHours"]
