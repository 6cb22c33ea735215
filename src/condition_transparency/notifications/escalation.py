"""
Escalation notifications with channel and quiet-hour suppression.

For every escalation reported by the projector, each notifiable member
(owner, dungeon master, player) gets a channel decision:

- outside quiet hours: every enabled channel
- inside quiet hours: in_app only, if enabled; otherwise nothing
- no enabled channel: nothing

Sends are submitted to a thread pool, one task per member, so a slow or
failing channel for one member never delays another. A short-lived
suppression marker per (group, token, condition, tier) drops duplicates
produced by overlapping refreshes.

Players receive the same redaction as the public summary: hidden tokens
are shrouded and exact rounds appear only for visible allied or neutral
tokens.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from ..models import (
    Clock,
    Escalation,
    Membership,
    NotificationChannel,
    NotificationPreference,
    UrgencyTier,
    utcnow,
)
from ..permissions import NOTIFIABLE_ROLES
from ..presentation import exposes_rounds, public_name
from ..summary.urgency import UrgencyPolicy
from .quiet_hours import QuietHours

if TYPE_CHECKING:
    from ..collaborators import MembershipDirectory, NotificationSender, PreferenceStore

logger = logging.getLogger("condition-transparency.notifications")


@dataclass(frozen=True)
class DispatchDecision:
    """Audit record of what one member received for one escalation.

    Attributes:
        user_id: Recipient
        token_id: Escalated token
        condition_key: Escalated condition
        tier: New urgency tier
        channels: Channels the notification was sent on (empty if suppressed)
        in_quiet_hours: Whether the member was inside their quiet window
        suppressed: True when nothing was sent
        reason: "delivered", "quiet_hours" or "no_channels"
    """
    user_id: str
    token_id: str
    condition_key: str
    tier: UrgencyTier
    channels: tuple[NotificationChannel, ...]
    in_quiet_hours: bool
    suppressed: bool
    reason: str


def select_channels(
    preference: NotificationPreference,
    now: datetime,
) -> tuple[list[NotificationChannel], bool]:
    """
    Pick delivery channels for a member at a given moment.

    Returns:
        (channels, in_quiet_hours)
    """
    window = QuietHours.from_values(
        preference.quiet_hours_start,
        preference.quiet_hours_end,
        preference.timezone,
    )
    quiet = window is not None and window.contains(now)
    if quiet:
        return ([NotificationChannel.IN_APP] if preference.channel_in_app else []), True
    return preference.enabled_channels(), False


class SuppressionMarkers:
    """Expiring markers used to debounce repeated escalations."""

    def __init__(self, ttl_seconds: float = 5.0) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._markers: dict[tuple[str, ...], datetime] = {}
        self._lock = threading.Lock()

    def claim(self, key: tuple[str, ...], now: datetime) -> bool:
        """Set the marker; False if an unexpired marker already exists."""
        with self._lock:
            for stale in [k for k, until in self._markers.items() if until <= now]:
                del self._markers[stale]
            if key in self._markers:
                return False
            self._markers[key] = now + self.ttl
            return True


class EscalationNotifier:
    """
    Dispatches escalation notifications to group members.

    Attributes:
        members: Membership directory
        preferences: Per-user notification preferences
        sender: Outbound notification channel implementation
        markers: Debounce markers
    """

    def __init__(
        self,
        members: "MembershipDirectory",
        preferences: "PreferenceStore",
        sender: "NotificationSender",
        clock: Clock = utcnow,
        debounce_seconds: float = 5.0,
        max_workers: int = 4,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self.members = members
        self.preferences = preferences
        self.sender = sender
        self.clock = clock
        self.markers = SuppressionMarkers(debounce_seconds)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="condition-notify"
        )
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    def notify(self, escalations: list[Escalation]) -> list[DispatchDecision]:
        """
        Decide and dispatch notifications for a batch of escalations.

        Returns:
            One decision per (member, escalation) that was not debounced
        """
        now = self.clock()
        decisions: list[DispatchDecision] = []

        for escalation in escalations:
            key = (
                escalation.group_id,
                escalation.token_id,
                escalation.condition_key,
                escalation.new_tier.value,
            )
            if not self.markers.claim(key, now):
                logger.debug(f"Escalation debounced: {key}")
                continue

            for member in self.members.members(escalation.group_id):
                if member.role not in NOTIFIABLE_ROLES:
                    continue
                decisions.append(self._decide_and_send(member, escalation, now))

        return decisions

    def _decide_and_send(self, member: Membership, escalation: Escalation, now: datetime) -> DispatchDecision:
        user_id = member.user_id
        preference = self.preferences.preference_for(user_id) or NotificationPreference(user_id=user_id)
        channels, quiet = select_channels(preference, now)

        if channels:
            payload = _escalation_payload(escalation, member.is_privileged)
            self.dispatch(user_id, "condition_escalated", payload, channels)
            reason = "delivered"
        else:
            reason = "quiet_hours" if quiet else "no_channels"
            logger.info(f"Escalation notification suppressed for {user_id}: {reason}")

        return DispatchDecision(
            user_id=user_id,
            token_id=escalation.token_id,
            condition_key=escalation.condition_key,
            tier=escalation.new_tier,
            channels=tuple(channels),
            in_quiet_hours=quiet,
            suppressed=not channels,
            reason=reason,
        )

    def dispatch(
        self,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        channels: list[NotificationChannel],
    ) -> Future:
        """Submit one send to the pool; failures are logged by the task."""
        future = self._executor.submit(self._send, user_id, kind, payload, channels)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _send(
        self,
        user_id: str,
        kind: str,
        payload: dict[str, Any],
        channels: list[NotificationChannel],
    ) -> bool:
        try:
            self.sender.send(user_id, kind, payload, channels)
        except Exception as e:
            logger.warning(f"Notification {kind} to {user_id} failed: {e}")
            return False
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight sends. Returns False if some did not finish in time."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} notification(s) still in flight after {timeout}s")
        return not not_done

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def _escalation_payload(escalation: Escalation, privileged: bool) -> dict[str, Any]:
    """Owners and dungeon masters get real names and rounds; everyone else the public projection."""
    name = escalation.token_name if privileged else public_name(escalation)
    show_rounds = privileged or exposes_rounds(escalation)
    return {
        "title": f"{name} • {escalation.condition_label} now {escalation.new_tier.value}",
        "group_id": escalation.group_id,
        "token_id": escalation.token_id,
        "condition_key": escalation.condition_key,
        "urgency": escalation.new_tier.value,
        "previous_urgency": escalation.previous_tier.value if escalation.previous_tier else None,
        "rounds_remaining": escalation.rounds_remaining if show_rounds else None,
        "rounds_hint": UrgencyPolicy.rounds_hint(escalation.rounds_remaining),
        "generated_at": escalation.generated_at.isoformat(),
    }


__all__ = [
    "DispatchDecision",
    "select_channels",
    "SuppressionMarkers",
    "EscalationNotifier",
]
