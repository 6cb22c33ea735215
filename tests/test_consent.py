"""
Tests for the consent ledger.
"""

import pytest

from condition_transparency.exceptions import NotFound, ValidationError
from condition_transparency.models import ConsentAction, VisibilityMode

from conftest import DM, GROUP_ID, OBSERVER, OTHER_PLAYER, OWNER, PLAYER


class TestConsentLedger:
    """Tests for recording and querying consent."""

    def test_record_grant(self, engine, clock):
        entry = engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details", recorded_by=OWNER)
        assert entry.action == ConsentAction.GRANTED
        assert entry.visibility == VisibilityMode.DETAILS
        assert entry.recorded_by == OWNER
        assert entry.recorded_at == clock.now

    def test_recorded_by_defaults_to_subject(self, engine):
        assert engine.consent.record(GROUP_ID, PLAYER, granted=True).recorded_by == PLAYER

    def test_non_member_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.consent.record(GROUP_ID, "u-stranger", granted=True)

    def test_unknown_group(self, engine):
        with pytest.raises(NotFound):
            engine.consent.record("grp-missing", PLAYER, granted=True)

    def test_latest_entry_wins(self, engine, clock):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        clock.advance(minutes=5)
        engine.consent.record(GROUP_ID, PLAYER, granted=False)

        assert engine.consent.current(GROUP_ID)[PLAYER].action == ConsentAction.REVOKED
        assert engine.consent.details_consent(GROUP_ID) == set()
        assert len(engine.consent.audit_trail(GROUP_ID)) == 2

    def test_allows(self, engine):
        engine.consent.record(GROUP_ID, PLAYER, granted=True, visibility="details")
        engine.consent.record(GROUP_ID, OTHER_PLAYER, granted=True, visibility="counts")

        assert engine.consent.allows(GROUP_ID, PLAYER, "details")
        assert engine.consent.allows(GROUP_ID, PLAYER, "counts")
        assert engine.consent.allows(GROUP_ID, OTHER_PLAYER, "counts")
        assert not engine.consent.allows(GROUP_ID, OTHER_PLAYER, "details")
        assert not engine.consent.allows(GROUP_ID, OBSERVER, "counts")

    def test_statuses_and_pending(self, engine):
        engine.consent.record(GROUP_ID, OWNER, granted=True)
        engine.consent.record(GROUP_ID, DM, granted=True)
        engine.consent.record(GROUP_ID, PLAYER, granted=False)

        statuses = {s.user_id: s.status for s in engine.consent.statuses(GROUP_ID)}
        assert statuses[OWNER] == "granted"
        assert statuses[PLAYER] == "revoked"
        assert statuses[OBSERVER] == "unknown"
        assert sorted(engine.consent.pending(GROUP_ID)) == sorted([PLAYER, OTHER_PLAYER, OBSERVER])

    def test_audit_trail_newest_first(self, engine, clock):
        engine.consent.record(GROUP_ID, PLAYER, granted=True)
        clock.advance(minutes=1)
        engine.consent.record(GROUP_ID, OTHER_PLAYER, granted=True)
        trail = engine.consent.audit_trail(GROUP_ID, limit=1)
        assert [e.user_id for e in trail] == [OTHER_PLAYER]
