"""
Configuration model for the condition-timer transparency engine.

Settings are read from ``CONDITION_TRANSPARENCY_*`` environment variables
(optionally via a ``.env`` file) and validated by pydantic.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("condition-transparency")

ENV_PREFIX = "CONDITION_TRANSPARENCY_"


class SharePreset(BaseModel):
    """A named share configuration.

    Attributes:
        visibility_mode: "counts" or "details"
        expires_in_hours: Lifetime of the share; None means it never expires
        description: Short text shown to the group owner when picking a preset
    """
    visibility_mode: str = Field(default="counts", pattern="^(counts|details)$")
    expires_in_hours: Optional[int] = Field(default=None, ge=1)
    description: str = ""


def _default_presets() -> dict[str, SharePreset]:
    return {
        "one_shot_preview": SharePreset(
            visibility_mode="counts",
            expires_in_hours=24,
            description="A single-session peek with counts only.",
        ),
        "extended_allies": SharePreset(
            visibility_mode="details",
            expires_in_hours=72,
            description="Three days of detailed timers for allied spectators.",
        ),
        "evergreen_scouting": SharePreset(
            visibility_mode="counts",
            expires_in_hours=None,
            description="A standing counts-only link for scouting parties.",
        ),
    }


class TransparencySettings(BaseModel):
    """Configuration settings for the transparency engine.

    Controls urgency policy, cache lifetime, share link defaults, export
    delivery and the maintenance heuristics.
    """

    # Storage
    data_dir: Optional[Path] = Field(
        default=None,
        description="Directory for JSONL logs and JSON tables; None keeps everything in memory"
    )
    export_path: str = Field(
        default="exports/condition-transparency",
        description="Export directory, relative to data_dir"
    )

    # Summary projection
    summary_cache_ttl: int = Field(
        default=300,
        ge=1,
        description="Seconds a cached summary stays valid"
    )
    critical_threshold: int = Field(
        default=2,
        ge=0,
        description="Rounds remaining at or below which a timer is critical"
    )
    warning_threshold: int = Field(
        default=4,
        ge=0,
        description="Rounds remaining at or below which a timer is a warning"
    )
    max_condition_duration: int = Field(
        default=20,
        ge=1,
        description="Upper bound for a condition timer in rounds"
    )
    timeline_limit: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Chronicle entries attached to each condition"
    )

    # Notifications
    escalation_debounce_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Window during which a repeated escalation is suppressed"
    )
    notification_workers: int = Field(
        default=4,
        ge=1,
        description="Thread pool size for notification dispatch"
    )
    notification_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds to wait for in-flight notifications on flush"
    )

    # Share links
    share_default_ttl_days: int = Field(
        default=14,
        ge=1,
        description="Default share lifetime when no expiry is requested"
    )
    share_expiring_soon_hours: int = Field(
        default=24,
        ge=1,
        description="Lead time before expiry at which a share is 'expiring_soon'"
    )
    share_presets: dict[str, SharePreset] = Field(
        default_factory=_default_presets,
        description="Named share bundles"
    )
    catch_up_prompt_limit: int = Field(
        default=3,
        ge=0,
        description="Maximum catch-up prompts returned with a shared view"
    )
    catch_up_excerpt_length: int = Field(
        default=240,
        ge=20,
        description="Maximum characters per catch-up excerpt"
    )
    hash_salt: str = Field(
        default="condition-transparency",
        description="Salt mixed into hashed IP addresses and user agents"
    )

    # Exports
    default_export_format: str = Field(default="json", pattern="^(csv|json)$")
    default_export_visibility: str = Field(default="counts", pattern="^(counts|details)$")
    storage_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds allowed for writing an export file"
    )
    webhook_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds allowed for each webhook POST"
    )
    signature_header: str = Field(
        default="X-Condition-Transparency-Signature",
        description="Header carrying the HMAC-SHA256 webhook signature"
    )
    export_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts the export worker makes before giving up"
    )
    export_retry_backoff: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds multiplied by the attempt number between retries"
    )
    failure_reason_length: int = Field(
        default=500,
        ge=20,
        description="Maximum stored length of an export failure reason"
    )

    # Maintenance
    maintenance_window_days: int = Field(
        default=7,
        ge=1,
        description="Trailing window for the quiet-hour access ratio"
    )
    quiet_hour_attention_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Quiet-hour access ratio above which a group needs attention"
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def validate_data_dir(cls, v: Any) -> Any:
        """Treat an empty string as "no data directory"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def validate_thresholds(self) -> "TransparencySettings":
        """Ensure the warning threshold is not below the critical threshold."""
        if self.warning_threshold < self.critical_threshold:
            raise ValueError(
                f"warning_threshold ({self.warning_threshold}) must be >= "
                f"critical_threshold ({self.critical_threshold})"
            )
        return self

    @property
    def export_dir(self) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / self.export_path


def load_settings(env_file: Optional[str] = None, **overrides: Any) -> TransparencySettings:
    """
    Build settings from the environment.

    Each field maps to ``CONDITION_TRANSPARENCY_<FIELD_NAME>``; values are
    passed through pydantic so "300" becomes an int and so on. Share presets
    are not configurable through the environment.

    Args:
        env_file: Optional path to a .env file (defaults to dotenv's lookup)
        **overrides: Explicit values that win over the environment

    Returns:
        Validated TransparencySettings
    """
    if not load_dotenv(env_file):
        logger.debug("No .env file loaded; using process environment only")

    values: dict[str, Any] = {}
    for name in TransparencySettings.model_fields:
        if name == "share_presets":
            continue
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = raw
    values.update(overrides)
    return TransparencySettings(**values)


__all__ = [
    "SharePreset",
    "TransparencySettings",
    "load_settings",
    "ENV_PREFIX",
]
