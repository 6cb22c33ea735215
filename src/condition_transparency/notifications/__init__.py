"""
Notification policy for condition escalations.

Key components:
- QuietHours: local-time window evaluation, including windows past midnight
- select_channels: channel choice for a preference at a given moment
- EscalationNotifier: debounced, per-member fire-and-forget dispatch
"""

from .escalation import DispatchDecision, EscalationNotifier, SuppressionMarkers, select_channels
from .quiet_hours import QuietHours

__all__ = [
    "DispatchDecision",
    "EscalationNotifier",
    "SuppressionMarkers",
    "select_channels",
    "QuietHours",
]
