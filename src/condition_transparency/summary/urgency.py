"""
Urgency policy and flavour copy for condition timers.

This module provides:
- UrgencyPolicy: maps remaining rounds to an UrgencyTier using tunable
  thresholds, and to the vague hint shown when exact rounds are hidden.
- CONDITION_COPY: per-condition narration for each tier.
- describe(): render a condition's narration for a named target.
"""

from typing import Optional

from ..models import UrgencyTier

MAX_CONDITION_DURATION = 20


class UrgencyPolicy:
    """
    Threshold policy for urgency tiers.

    Rounds at or below ``critical_at`` are critical, at or below
    ``warning_at`` are warnings, anything above is normal. A timer with
    unknown rounds is treated as a warning.
    """

    def __init__(self, critical_at: int = 2, warning_at: int = 4) -> None:
        if warning_at < critical_at:
            raise ValueError("warning_at must be >= critical_at")
        self.critical_at = critical_at
        self.warning_at = warning_at

    def tier_for(self, rounds: Optional[int]) -> UrgencyTier:
        if rounds is None:
            return UrgencyTier.WARNING
        if rounds <= self.critical_at:
            return UrgencyTier.CRITICAL
        if rounds <= self.warning_at:
            return UrgencyTier.WARNING
        return UrgencyTier.NORMAL

    @staticmethod
    def rounds_hint(rounds: Optional[int]) -> str:
        """Vague remaining-time hint for viewers who may not see exact rounds."""
        if rounds is None:
            return "Lingering"
        if rounds <= 1:
            return "Moments remain"
        if rounds <= 3:
            return "Waning"
        return "Holding"


# ---------------------------------------------------------------------------
# Narration
# ---------------------------------------------------------------------------
# Templates use {target}. Keys are tier values; "normal" is the calm line.
# ---------------------------------------------------------------------------

CONDITION_COPY: dict[str, dict[str, str]] = {
    "blinded": {
        "normal": "{target} squints through the gloom but still tracks friendly voices.",
        "warning": "The dark closes in on {target}; every step is a guess.",
        "critical": "{target} is about to be left groping in total darkness.",
    },
    "charmed": {
        "normal": "{target} hums a tune that is not their own.",
        "warning": "A honeyed voice pulls at {target}; their loyalty flickers.",
        "critical": "{target} is a breath away from obeying a stranger's command.",
    },
    "frightened": {
        "normal": "{target} keeps glancing over a shoulder, grip still steady.",
        "warning": "Fear digs in; {target} edges toward retreat.",
        "critical": "{target} is ready to bolt at the next shadow.",
    },
    "grappled": {
        "normal": "{target} strains against a loose hold.",
        "warning": "The grip on {target} tightens with each heartbeat.",
        "critical": "{target} is moments from being pinned outright.",
    },
    "paralyzed": {
        "normal": "Stiffness creeps along {target}'s limbs.",
        "warning": "{target} is locked in place and fading.",
        "critical": "{target} stands helpless before the next blow.",
    },
    "poisoned": {
        "normal": "{target} shrugs off a queasy chill.",
        "warning": "Venom burns through {target}'s veins.",
        "critical": "The poison is close to overwhelming {target}.",
    },
    "restrained": {
        "normal": "{target} tests the bindings and finds some slack.",
        "warning": "The bonds on {target} bite deeper.",
        "critical": "{target} is nearly trussed beyond escape.",
    },
    "stunned": {
        "normal": "{target} shakes off a ringing daze.",
        "warning": "{target} reels, senses scattered.",
        "critical": "{target} is about to drop into a senseless stupor.",
    },
    "unconscious": {
        "normal": "{target} breathes slowly, out of the fight for now.",
        "warning": "{target}'s breathing grows shallow.",
        "critical": "{target} is slipping away without immediate aid.",
    },
}

_GENERIC_COPY = {
    "normal": "{target} is {label} but holding steady.",
    "warning": "{target} is {label} and it is getting worse.",
    "critical": "{target} is {label} and needs help this round.",
}


def label_for(condition_key: str) -> str:
    """Human label for a condition key: "frost_bitten" -> "Frost Bitten"."""
    return condition_key.replace("_", " ").replace("-", " ").title()


def describe(condition_key: str, target: str, tier: UrgencyTier) -> str:
    """Render the narration line for a condition on a target."""
    templates = CONDITION_COPY.get(condition_key.lower())
    if templates is None:
        return _GENERIC_COPY[tier.value].format(
            target=target, label=label_for(condition_key).lower()
        )
    return templates[tier.value].format(target=target)


__all__ = [
    "MAX_CONDITION_DURATION",
    "UrgencyPolicy",
    "CONDITION_COPY",
    "label_for",
    "describe",
]
