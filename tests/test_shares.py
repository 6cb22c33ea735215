"""
Tests for share links: lifecycle, consent-filtered resolution and access logging.
"""

import json
from datetime import time, timedelta

import pytest

from condition_transparency.exceptions import Forbidden, NotFound, ValidationError
from condition_transparency.models import (
    AccessEventType,
    GroupProfile,
    GroupRole,
    Membership,
    MentorBriefing,
    NotificationPreference,
    ShareState,
    VisibilityMode,
)
from condition_transparency.sharing import ExpiryPolicy, hash_identifier
from condition_transparency.views import SHROUDED_LABEL

from conftest import DM, GROUP_ID, OTHER_PLAYER, OWNER, PLAYER


def conditions_by_token(resolved) -> dict:
    return {entry.token_id: entry.conditions for entry in resolved.summary.entries}


class TestShareLifecycle:
    """Tests for create, revoke and extend."""

    def test_create_defaults(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER)
        assert share.visibility_mode == VisibilityMode.COUNTS
        assert share.expires_at == clock.now + timedelta(days=14)
        assert len(share.token) == 64
        assert share.access_count == 0

    def test_players_cannot_create(self, engine):
        with pytest.raises(Forbidden):
            engine.shares.create(GROUP_ID, PLAYER)

    def test_explicit_expiry(self, engine, clock):
        share = engine.shares.create(GROUP_ID, DM, expiry=ExpiryPolicy(hours=6))
        assert share.expires_at == clock.now + timedelta(hours=6)
        never = engine.shares.create(GROUP_ID, DM, expiry=ExpiryPolicy(never=True))
        assert never.expires_at is None

    def test_expiry_in_past_rejected(self, engine, clock):
        with pytest.raises(ValidationError):
            engine.shares.create(GROUP_ID, OWNER, expiry=ExpiryPolicy(expires_at=clock.now - timedelta(hours=1)))

    def test_presets(self, engine, clock):
        preview = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details", preset_key="one_shot_preview")
        assert preview.visibility_mode == VisibilityMode.COUNTS
        assert preview.expires_at == clock.now + timedelta(hours=24)
        assert preview.preset_key == "one_shot_preview"

        evergreen = engine.shares.create(GROUP_ID, OWNER, preset_key="evergreen_scouting")
        assert evergreen.expires_at is None

    def test_unknown_preset(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.shares.create(GROUP_ID, OWNER, preset_key="forever_and_ever")
        assert "preset_key" in exc_info.value.errors

    def test_new_share_supersedes_live_ones(self, engine):
        first = engine.shares.create(GROUP_ID, OWNER)
        second = engine.shares.create(GROUP_ID, OWNER)

        assert engine.store.get_share(first.id).revoked_at is not None
        assert [s.id for s in engine.shares.live_shares(GROUP_ID)] == [second.id]
        revocations = [e for e in engine.shares.access_trail(GROUP_ID, first.id)
                       if e.event_type == AccessEventType.REVOCATION]
        assert revocations[0].metadata == {"reason": "superseded"}

    def test_consent_snapshot_frozen_at_creation(self, engine):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.consent.record(GROUP_ID, PLAYER, granted=False)
        assert share.consent_snapshot[PLAYER]["status"] == "granted"
        assert share.consent_snapshot[OTHER_PLAYER]["status"] == "unknown"

    def test_revoke_is_idempotent(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER)
        revoked = engine.shares.revoke(GROUP_ID, share.id, DM)
        clock.advance(hours=1)
        again = engine.shares.revoke(GROUP_ID, share.id, DM)
        assert again.revoked_at == revoked.revoked_at

    def test_revoke_other_group_share(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.directory.add_group(GroupProfile(group_id="grp-other", name="Other"))
        engine.directory.add_member(Membership(group_id="grp-other", user_id=OWNER, role=GroupRole.OWNER))
        with pytest.raises(NotFound):
            engine.shares.revoke("grp-other", share.id, OWNER)

    def test_extend_from_current_expiry(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER, expiry=ExpiryPolicy(hours=10))
        extended = engine.shares.extend(GROUP_ID, share.id, OWNER, hours=5)
        assert extended.expires_at == share.expires_at + timedelta(hours=5)

    def test_extend_expired_share_from_now(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER, expiry=ExpiryPolicy(hours=1))
        clock.advance(hours=3)
        extended = engine.shares.extend(GROUP_ID, share.id, OWNER, hours=2)
        assert extended.expires_at == clock.now + timedelta(hours=2)

    def test_extend_never_and_revoked(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER)
        assert engine.shares.extend(GROUP_ID, share.id, OWNER, never=True).expires_at is None
        engine.shares.revoke(GROUP_ID, share.id, OWNER)
        with pytest.raises(ValidationError):
            engine.shares.extend(GROUP_ID, share.id, OWNER, hours=1)

    def test_extend_requires_lifetime(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER)
        with pytest.raises(ValidationError):
            engine.shares.extend(GROUP_ID, share.id, OWNER)


class TestShareResolution:
    """Tests for public token resolution."""

    def test_unknown_token(self, engine):
        with pytest.raises(NotFound):
            engine.shares.resolve("not-a-token")

    def test_counts_mode_hides_rounds(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER)
        resolved = engine.shares.resolve(share.token)

        assert resolved.share.state == ShareState.ACTIVE
        assert resolved.share.redacted is False
        for conditions in conditions_by_token(resolved).values():
            assert all(c.visibility == "counts" for c in conditions)
        payload = json.dumps(resolved.model_dump(mode="json"))
        assert "rounds_remaining" not in payload
        assert share.token not in payload

    def test_details_mode_respects_consent(self, engine):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        engine.consent.record(GROUP_ID, OTHER_PLAYER, granted=True, visibility="counts")
        share = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details")

        by_token = conditions_by_token(engine.shares.resolve(share.token))
        assert by_token["tok-ana"][0].visibility == "details"
        assert by_token["tok-ana"][0].rounds_remaining == 6
        assert by_token["tok-bram"][0].visibility == "counts"
        assert by_token["tok-ogre"][0].visibility == "details"
        assert by_token["tok-ogre"][0].rounds_remaining is None
        assert by_token["tok-lurker"][0].visibility == "counts"

    def test_consent_revocation_applies_to_existing_share(self, engine):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        share = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details")
        engine.consent.record(GROUP_ID, PLAYER, granted=False)
        assert conditions_by_token(engine.shares.resolve(share.token))["tok-ana"][0].visibility == "counts"

    def test_hidden_token_shrouded(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details")
        resolved = engine.shares.resolve(share.token)
        lurker = next(e for e in resolved.summary.entries if e.token_id == "tok-lurker")
        assert lurker.token_name == SHROUDED_LABEL
        assert "Cave Lurker" not in json.dumps(resolved.model_dump(mode="json"))

    def test_details_timeline_is_text_only(self, engine):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        engine.adjustments.apply(GROUP_ID, OWNER, [{"token_id": "tok-ana", "condition": "poisoned", "delta": 2}])
        share = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details")

        ana = conditions_by_token(engine.shares.resolve(share.token))["tok-ana"][0]
        assert [t.model_dump() for t in ana.timeline] == [{"summary_text": "Timer extended by 2 rounds."}]
        assert "Mira" not in json.dumps(ana.model_dump(mode="json"))

    def test_hostile_timeline_carries_no_rounds(self, engine):
        engine.adjustments.apply(GROUP_ID, DM, [{"token_id": "tok-ogre", "condition": "frightened", "delta": -3}])
        share = engine.shares.create(GROUP_ID, OWNER, visibility_mode="details")

        resolved = engine.shares.resolve(share.token)
        ogre = conditions_by_token(resolved)["tok-ogre"][0]
        assert ogre.visibility == "details"
        assert [t.summary_text for t in ogre.timeline] == ["Timer reduced."]
        assert ogre.rounds_remaining is None

    def test_access_logged_and_counted(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.shares.resolve(share.token, ip="203.0.113.7", user_agent="Mozilla/5.0")
        clock.advance(minutes=1)
        resolved = engine.shares.resolve(share.token)

        assert resolved.share.access_count == 2
        assert resolved.share.last_accessed_at == clock.now
        accesses = [e for e in engine.shares.access_trail(GROUP_ID, share.id)
                    if e.event_type == AccessEventType.ACCESS]
        assert len(accesses) == 2
        first = accesses[-1]
        assert first.ip_hash == hash_identifier("203.0.113.7", "test-salt")
        assert "203.0.113.7" not in first.model_dump_json()

    def test_revoked_share_degrades(self, engine):
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.shares.revoke(GROUP_ID, share.id, OWNER)
        resolved = engine.shares.resolve(share.token)

        assert resolved.share.state == ShareState.REDACTED
        assert resolved.share.redacted is True
        assert resolved.summary.entries == ()
        assert resolved.share.access_count == 1

    def test_expired_share_degrades(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER, expiry=ExpiryPolicy(hours=2))
        clock.advance(hours=2)
        resolved = engine.shares.resolve(share.token)
        assert resolved.share.state == ShareState.EXPIRED
        assert resolved.share.redacted is True
        assert resolved.summary.entries == ()
        assert resolved.catch_up_prompts == ()

    def test_expiring_soon(self, engine, clock):
        share = engine.shares.create(GROUP_ID, OWNER, expiry=ExpiryPolicy(hours=48))
        assert engine.shares.resolve(share.token).share.state == ShareState.ACTIVE
        clock.advance(hours=30)
        assert engine.shares.resolve(share.token).share.state == ShareState.EXPIRING_SOON

    def test_quiet_hour_access_flagged(self, engine):
        engine.directory.add_group(GroupProfile(
            group_id=GROUP_ID, name="The Lantern Company",
            quiet_hours_start=time(14, 0), quiet_hours_end=time(16, 0),
        ))
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.shares.resolve(share.token)
        access = engine.shares.access_trail(GROUP_ID, share.id)[0]
        assert access.event_type == AccessEventType.ACCESS
        assert access.quiet_hour_suppressed is True

    def test_creator_preference_used_without_group_window(self, engine, clock):
        engine.directory.set_preference(NotificationPreference(
            user_id=OWNER, quiet_hours_start=time(22, 0), quiet_hours_end=time(7, 0),
        ))
        share = engine.shares.create(GROUP_ID, OWNER)
        assert engine.shares.in_quiet_hours(share, clock.now) is False
        assert engine.shares.in_quiet_hours(share, clock.now.replace(hour=23)) is True


class TestCatchUpPrompts:
    """Tests for briefing excerpts attached to share views."""

    def add_briefing(self, engine, generated_at, text, status="completed", moderation="approved"):
        engine.directory.add_briefing(MentorBriefing(
            id=f"brief-{generated_at.isoformat()}", group_id=GROUP_ID, status=status,
            moderation_status=moderation, text=text, generated_at=generated_at,
        ))

    def test_latest_approved_briefing_paragraphs(self, engine, clock):
        self.add_briefing(engine, clock.now - timedelta(hours=2), "Old news.")
        self.add_briefing(engine, clock.now - timedelta(hours=1), "First.\n\nSecond.\nThird.\nFourth.")
        self.add_briefing(engine, clock.now - timedelta(minutes=5), "Draft.", moderation="pending")

        share = engine.shares.create(GROUP_ID, OWNER)
        prompts = engine.shares.resolve(share.token).catch_up_prompts
        assert [p.excerpt for p in prompts] == ["First.", "Second.", "Third."]

    def test_only_briefings_since_last_access(self, engine, clock):
        self.add_briefing(engine, clock.now - timedelta(hours=1), "Before.")
        share = engine.shares.create(GROUP_ID, OWNER)
        engine.shares.resolve(share.token)

        clock.advance(minutes=10)
        assert engine.shares.resolve(share.token).catch_up_prompts == ()

        clock.advance(minutes=1)
        self.add_briefing(engine, clock.now, "Fresh.")
        assert [p.excerpt for p in engine.shares.resolve(share.token).catch_up_prompts] == ["Fresh."]

    def test_long_paragraph_truncated(self, engine, clock):
        self.add_briefing(engine, clock.now - timedelta(hours=1), "x" * 1000)
        prompts = engine.shares.catch_up_prompts(GROUP_ID, since=None)
        assert len(prompts[0].excerpt) == engine.settings.catch_up_excerpt_length
        assert prompts[0].excerpt.endswith("…")
