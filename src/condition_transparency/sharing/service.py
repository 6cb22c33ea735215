"""
Share-link service: opaque, time-boxed public views of a group's timers.

Key components:
- ExpiryPolicy: explicit datetime, lifetime in hours, never, or the default
- ShareLinkService: create / revoke / extend shares and resolve tokens

Resolution always leaves an access event behind, including for expired
and revoked shares, and always increments the share's access counter.
Past expiry or revocation the payload degrades to an empty, redacted
summary; only an unknown token is an error.
"""

from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional, Union

from ..exceptions import NotFound, ValidationError
from ..models import (
    AccessEventType,
    Clock,
    Share,
    ShareAccessEvent,
    VisibilityMode,
    utcnow,
)
from ..notifications.quiet_hours import QuietHours
from ..presentation import shared_summary
from ..views import CatchUpPrompt, ResolvedShareView, SharedSummary, ShareStateView

if TYPE_CHECKING:
    from ..chronicle import ChronicleService
    from ..collaborators import BriefingSource, MembershipDirectory, PreferenceStore
    from ..config import TransparencySettings
    from ..permissions import GroupAccessResolver
    from ..storage import TransparencyStore
    from ..summary.projector import SummaryProjector
    from .consent import ConsentLedger

logger = logging.getLogger("condition-transparency.shares")

TOKEN_BYTES = 48


@dataclass(frozen=True)
class ExpiryPolicy:
    """How long a new share lives.

    Exactly one of the fields is normally set; with none set the service
    applies its default lifetime.
    """
    hours: Optional[int] = None
    expires_at: Optional[datetime] = None
    never: bool = False

    def resolve(self, now: datetime, default_ttl: timedelta) -> Optional[datetime]:
        """
        Raises:
            ValidationError: If the requested expiry is not in the future
        """
        if self.never:
            return None
        if self.expires_at is not None:
            if self.expires_at <= now:
                raise ValidationError(
                    "Share expiry must be in the future",
                    errors={"expires_at": "must be in the future"},
                )
            return self.expires_at
        if self.hours is not None:
            if self.hours < 1:
                raise ValidationError(
                    "Share lifetime must be at least one hour",
                    errors={"expires_in_hours": "must be >= 1"},
                )
            return now + timedelta(hours=self.hours)
        return now + default_ttl


def hash_identifier(value: Optional[str], salt: str) -> Optional[str]:
    """Salted SHA-256 of an IP address or user agent; raw values are never stored."""
    if not value:
        return None
    return hashlib.sha256(f"{salt}|{value}".encode("utf-8")).hexdigest()


class ShareLinkService:
    """
    Issues and resolves share links.

    Attributes:
        store: Transparency store (shares table and access log)
        projector: Source of the current summary
        consent: Consent ledger for snapshots and per-owner filtering
        chronicle: Source of text-only timelines for detailed shares
        settings: Share defaults, presets and hashing salt
    """

    def __init__(
        self,
        store: "TransparencyStore",
        projector: "SummaryProjector",
        consent: "ConsentLedger",
        chronicle: "ChronicleService",
        members: "MembershipDirectory",
        preferences: "PreferenceStore",
        briefings: "BriefingSource",
        access: "GroupAccessResolver",
        settings: "TransparencySettings",
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.projector = projector
        self.consent = consent
        self.chronicle = chronicle
        self.members = members
        self.preferences = preferences
        self.briefings = briefings
        self.access = access
        self.settings = settings
        self.clock = clock

    @property
    def lead_time(self) -> timedelta:
        return timedelta(hours=self.settings.share_expiring_soon_hours)

    # -- lifecycle ----------------------------------------------------------

    def create(
        self,
        group_id: str,
        creator_id: str,
        visibility_mode: Union[VisibilityMode, str] = VisibilityMode.COUNTS,
        expiry: Optional[ExpiryPolicy] = None,
        preset_key: Optional[str] = None,
    ) -> Share:
        """
        Create a share for a group, revoking the group's earlier live shares.

        A preset overrides both visibility and expiry.

        Raises:
            Forbidden: If the creator is not an owner or dungeon master
            ValidationError: For an unknown preset or an invalid expiry
        """
        self.access.require_privileged(group_id, creator_id)

        if preset_key is not None:
            preset = self.settings.share_presets.get(preset_key)
            if preset is None:
                raise ValidationError(
                    f"Unknown share preset: {preset_key}",
                    errors={"preset_key": "unknown preset"},
                )
            visibility_mode = preset.visibility_mode
            expiry = ExpiryPolicy(
                hours=preset.expires_in_hours,
                never=preset.expires_in_hours is None,
            )

        now = self.clock()
        expires_at = (expiry or ExpiryPolicy()).resolve(
            now, timedelta(days=self.settings.share_default_ttl_days)
        )

        for existing in self.store.shares_for(group_id):
            if existing.is_live(now):
                self._revoke(existing, creator_id, now, reason="superseded")

        share = Share(
            token=self._unused_token(),
            group_id=group_id,
            created_by=creator_id,
            created_at=now,
            expires_at=expires_at,
            visibility_mode=VisibilityMode(visibility_mode),
            preset_key=preset_key,
            consent_snapshot=self.consent.snapshot(group_id),
        )
        self._log_event(share, AccessEventType.CREATED, now, user_id=creator_id, metadata={
            "visibility_mode": share.visibility_mode.value,
            "preset_key": preset_key,
            "expires_at": expires_at.isoformat() if expires_at else None,
        })
        self.store.insert_share(share)
        logger.info(
            f"Share {share.id} created for group {group_id} by {creator_id} "
            f"({share.visibility_mode.value}, expires {expires_at or 'never'})"
        )
        return share

    def _unused_token(self) -> str:
        while True:
            token = secrets.token_urlsafe(TOKEN_BYTES)
            if self.store.share_by_token(token) is None:
                return token

    def revoke(self, group_id: str, share_id: str, actor_id: str) -> Share:
        """
        Revoke a share. The row is kept; revoking twice is a no-op.

        Raises:
            Forbidden: If the actor is not privileged
            NotFound: If the share does not belong to the group
        """
        self.access.require_privileged(group_id, actor_id)
        share = self._get(group_id, share_id)
        if share.revoked_at is not None:
            return share
        return self._revoke(share, actor_id, self.clock(), reason="manual")

    def _revoke(self, share: Share, actor_id: Optional[str], now: datetime, reason: str) -> Share:
        self._log_event(share, AccessEventType.REVOCATION, now, user_id=actor_id, metadata={"reason": reason})
        revoked = self.store.update_share(share.id, revoked_at=now)
        logger.info(f"Share {share.id} revoked ({reason})")
        return revoked

    def extend(
        self,
        group_id: str,
        share_id: str,
        actor_id: str,
        hours: Optional[int] = None,
        never: bool = False,
    ) -> Share:
        """
        Push a share's expiry out from max(now, current expiry).

        Raises:
            Forbidden: If the actor is not privileged
            NotFound: If the share does not belong to the group
            ValidationError: If the share is revoked or no lifetime is given
        """
        self.access.require_privileged(group_id, actor_id)
        share = self._get(group_id, share_id)
        if share.revoked_at is not None:
            raise ValidationError("Revoked shares cannot be extended", errors={"share_id": "revoked"})
        if not never and (hours is None or hours < 1):
            raise ValidationError("An extension needs hours >= 1 or never", errors={"hours": "must be >= 1"})

        now = self.clock()
        if never:
            expires_at = None
        else:
            base = max(now, share.expires_at) if share.expires_at else now
            expires_at = base + timedelta(hours=hours)

        self._log_event(share, AccessEventType.EXTENSION, now, user_id=actor_id, metadata={
            "previous_expires_at": share.expires_at.isoformat() if share.expires_at else None,
            "expires_at": expires_at.isoformat() if expires_at else None,
        })
        extended = self.store.update_share(share.id, expires_at=expires_at)
        logger.info(f"Share {share.id} extended to {expires_at or 'never'}")
        return extended

    def _get(self, group_id: str, share_id: str) -> Share:
        share = self.store.get_share(share_id)
        if share is None or share.group_id != group_id:
            raise NotFound(f"Share not found: {share_id}", resource="share")
        return share

    # -- resolution ---------------------------------------------------------

    def resolve(
        self,
        token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ResolvedShareView:
        """
        Resolve a public share token.

        The access event is written before the counter moves, so a failed
        append leaves the share untouched.

        Raises:
            NotFound: If no share has this token
            AppendFailure: If the access log cannot be written
        """
        share = self.store.share_by_token(token)
        if share is None:
            raise NotFound("Share link not found", resource="share")

        now = self.clock()
        previous_access = share.last_accessed_at
        state = share.state(now, self.lead_time)

        self._log_event(
            share,
            AccessEventType.ACCESS,
            now,
            ip=ip,
            user_agent=user_agent,
            user_id=user_id,
            metadata={"state": state.value},
        )
        share = self.store.record_share_access(share.id, now)

        if share.is_live(now):
            summary = self.projector.current(share.group_id)
            timelines = (
                self.chronicle.public_timelines(summary)
                if share.visibility_mode == VisibilityMode.DETAILS
                else {}
            )
            projected = shared_summary(
                summary,
                share.visibility_mode,
                self.consent.details_consent(share.group_id),
                timelines,
            )
            prompts = self.catch_up_prompts(share.group_id, since=previous_access)
            redacted = False
        else:
            projected = SharedSummary(group_id=share.group_id, visibility_mode=share.visibility_mode)
            prompts = []
            redacted = True

        return ResolvedShareView(
            summary=projected,
            share=ShareStateView(
                state=state,
                redacted=redacted,
                access_count=share.access_count,
                created_at=share.created_at,
                expires_at=share.expires_at,
                last_accessed_at=share.last_accessed_at,
                visibility_mode=share.visibility_mode,
                preset_key=share.preset_key,
            ),
            catch_up_prompts=tuple(prompts),
        )

    def in_quiet_hours(self, share: Share, now: datetime) -> bool:
        """Whether ``now`` is inside the group's effective quiet window.

        The group's own window wins; otherwise the share creator's
        notification preference is used.
        """
        window = None
        group = self.members.group(share.group_id)
        if group is not None:
            window = QuietHours.from_values(group.quiet_hours_start, group.quiet_hours_end, group.timezone)
        if window is None:
            preference = self.preferences.preference_for(share.created_by)
            if preference is not None:
                window = QuietHours.from_values(
                    preference.quiet_hours_start, preference.quiet_hours_end, preference.timezone
                )
        return window is not None and window.contains(now)

    def catch_up_prompts(self, group_id: str, since: Optional[datetime]) -> list[CatchUpPrompt]:
        """Excerpts of the newest approved briefing generated after ``since``."""
        limit = self.settings.catch_up_prompt_limit
        if limit == 0:
            return []

        candidates = [
            b for b in self.briefings.briefings_for(group_id)
            if b.is_publishable and (since is None or b.generated_at > since)
        ]
        if not candidates:
            return []

        latest = max(candidates, key=lambda b: b.generated_at)
        max_length = self.settings.catch_up_excerpt_length
        prompts = []
        for paragraph in re.split(r"\n+", latest.text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            if len(paragraph) > max_length:
                paragraph = paragraph[: max_length - 1].rstrip() + "…"
            prompts.append(CatchUpPrompt(excerpt=paragraph, generated_at=latest.generated_at))
            if len(prompts) >= limit:
                break
        return prompts

    # -- queries ------------------------------------------------------------

    def live_shares(self, group_id: str) -> list[Share]:
        now = self.clock()
        return [s for s in self.store.shares_for(group_id) if s.is_live(now)]

    def access_trail(self, group_id: str, share_id: Optional[str] = None) -> list[ShareAccessEvent]:
        """Newest-first share events for a group, optionally for one share."""
        events = self.store.share_events.filter(
            lambda e: e.group_id == group_id and (share_id is None or e.share_id == share_id)
        )
        return list(reversed(events))

    def owner_payload(self, share: Share) -> dict[str, Any]:
        """Share description for owners, including the secret token."""
        now = self.clock()
        return {
            "id": share.id,
            "token": share.token,
            "url_path": f"/shares/{share.token}",
            "group_id": share.group_id,
            "state": share.state(now, self.lead_time).value,
            "visibility_mode": share.visibility_mode.value,
            "preset_key": share.preset_key,
            "created_at": share.created_at.isoformat(),
            "expires_at": share.expires_at.isoformat() if share.expires_at else None,
            "revoked_at": share.revoked_at.isoformat() if share.revoked_at else None,
            "access_count": share.access_count,
            "last_accessed_at": share.last_accessed_at.isoformat() if share.last_accessed_at else None,
        }

    def _log_event(
        self,
        share: Share,
        event_type: AccessEventType,
        now: datetime,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ShareAccessEvent:
        salt = self.settings.hash_salt
        event = ShareAccessEvent(
            share_id=share.id,
            group_id=share.group_id,
            event_type=event_type,
            occurred_at=now,
            ip_hash=hash_identifier(ip, salt),
            user_agent_hash=hash_identifier(user_agent, salt),
            user_id=user_id,
            quiet_hour_suppressed=self.in_quiet_hours(share, now),
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        return self.store.share_events.append(event)


__all__ = [
    "TOKEN_BYTES",
    "ExpiryPolicy",
    "hash_identifier",
    "ShareLinkService",
]
