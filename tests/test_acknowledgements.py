"""
Tests for acknowledgements and role-scoped summary views.
"""

import json

import pytest
from pydantic import ValidationError as PydanticValidationError

from condition_transparency.exceptions import Forbidden, NotFound, ValidationError
from condition_transparency.models import AckSource
from condition_transparency.views import (
    SHROUDED_LABEL,
    PrivilegedSummaryView,
    PublicConditionView,
    PublicSummaryView,
)

from conftest import DM, GROUP_ID, OBSERVER, OTHER_PLAYER, OWNER, PLAYER, set_rounds


@pytest.fixture
def summary(engine):
    return engine.projector.current(GROUP_ID)


class TestAcknowledge:
    """Tests for AcknowledgementTracker.acknowledge."""

    def test_records_acknowledgement(self, engine, summary):
        result = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER
        )
        assert result.created is True
        assert result.acknowledged_count == 1
        assert result.acknowledgement.source == AckSource.ONLINE

    def test_duplicate_is_noop(self, engine, summary, clock):
        first = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER
        )
        clock.advance(seconds=3)
        second = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER
        )
        assert second.created is False
        assert second.acknowledgement.acknowledged_at == first.acknowledgement.acknowledged_at
        assert second.acknowledged_count == 1

    def test_count_is_distinct_users(self, engine, summary):
        for user in (PLAYER, OTHER_PLAYER, PLAYER):
            result = engine.acknowledgements.acknowledge(
                GROUP_ID, "tok-bram", "blinded", summary.generated_at, user
            )
        assert result.acknowledged_count == 2

    def test_new_generation_replaces_row(self, engine, summary, clock):
        engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER)
        clock.advance(seconds=10)
        newer = engine.projector.refresh(GROUP_ID).summary

        result = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", newer.generated_at, PLAYER
        )
        assert result.created is True
        assert engine.acknowledgements.count_for(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at
        ) == 0
        assert len(engine.store.acknowledgements(GROUP_ID)) == 1

    def test_offline_submission(self, engine, summary, clock):
        queued = clock.now
        clock.advance(minutes=2)
        result = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER,
            source="offline", queued_at=queued,
        )
        assert result.acknowledgement.source == AckSource.OFFLINE
        assert result.acknowledgement.queued_at == queued

    def test_unknown_token_rejected(self, engine, summary):
        with pytest.raises(ValidationError) as exc_info:
            engine.acknowledgements.acknowledge(GROUP_ID, "tok-nope", "poisoned", summary.generated_at, PLAYER)
        assert "token_id" in exc_info.value.errors

    def test_inactive_condition_rejected(self, engine, summary, directory):
        set_rounds(directory, "tok-ana", "poisoned", None)
        with pytest.raises(ValidationError) as exc_info:
            engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER)
        assert "condition_key" in exc_info.value.errors

    def test_response_hides_count_from_public(self, engine, summary):
        result = engine.acknowledgements.acknowledge(
            GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER
        )
        public = result.as_response(privileged=False)["acknowledgement"]
        privileged = result.as_response(privileged=True)["acknowledgement"]
        assert public["acknowledged_by_viewer"] is True
        assert "acknowledged_count" not in public
        assert privileged["acknowledged_count"] == 1


class TestPresentedViews:
    """Tests for role-scoped hydration through SummaryPresenter."""

    def test_player_gets_public_view(self, engine):
        view = engine.presenter.present(GROUP_ID, PLAYER)
        assert isinstance(view, PublicSummaryView)
        assert view.audience == "public"

    def test_public_view_has_no_counts(self, engine, summary):
        engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, OTHER_PLAYER)
        payload = engine.presenter.present(GROUP_ID, OBSERVER).model_dump(mode="json")
        assert "acknowledged_count" not in json.dumps(payload)

    def test_viewer_flag(self, engine, summary):
        engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER)
        mine = engine.presenter.present(GROUP_ID, PLAYER)
        theirs = engine.presenter.present(GROUP_ID, OTHER_PLAYER)

        def flag(view):
            entry = next(e for e in view.entries if e.token_id == "tok-ana")
            return entry.conditions[0].acknowledged_by_viewer

        assert flag(mine) is True
        assert flag(theirs) is False

    def test_privileged_view_counts_current_generation_only(self, engine, summary, clock):
        engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, PLAYER)
        engine.acknowledgements.acknowledge(GROUP_ID, "tok-ana", "poisoned", summary.generated_at, OTHER_PLAYER)

        view = engine.presenter.present(GROUP_ID, OWNER)
        assert isinstance(view, PrivilegedSummaryView)
        ana = next(e for e in view.entries if e.token_id == "tok-ana")
        assert ana.conditions[0].acknowledged_count == 2

        clock.advance(seconds=10)
        engine.projector.refresh(GROUP_ID)
        view = engine.presenter.present(GROUP_ID, DM)
        ana = next(e for e in view.entries if e.token_id == "tok-ana")
        assert ana.conditions[0].acknowledged_count == 0

    def test_hidden_token_is_shrouded_for_players(self, engine):
        view = engine.presenter.present(GROUP_ID, PLAYER)
        lurker = next(e for e in view.entries if e.token_id == "tok-lurker")
        assert lurker.token_name == SHROUDED_LABEL
        assert lurker.conditions[0].rounds_remaining is None
        assert lurker.conditions[0].rounds_hint == "Waning"
        assert "Cave Lurker" not in json.dumps(view.model_dump(mode="json"))

    def test_exact_rounds_only_for_visible_allies(self, engine):
        view = engine.presenter.present(GROUP_ID, PLAYER)
        by_token = {e.token_id: e.conditions[0] for e in view.entries}
        assert by_token["tok-ana"].rounds_remaining == 6
        assert by_token["tok-ogre"].rounds_remaining is None
        assert by_token["tok-ogre"].rounds_hint == "Holding"

    def test_privileged_view_shows_everything(self, engine):
        view = engine.presenter.present(GROUP_ID, OWNER)
        lurker = next(e for e in view.entries if e.token_id == "tok-lurker")
        assert lurker.token_name == "Cave Lurker"
        assert lurker.conditions[0].rounds_remaining == 2
        assert lurker.map_id == "map-1"

    def test_non_member_forbidden(self, engine):
        with pytest.raises(Forbidden):
            engine.presenter.present(GROUP_ID, "u-stranger")

    def test_unknown_group(self, engine):
        with pytest.raises(NotFound):
            engine.presenter.present("grp-missing", OWNER)

    def test_public_condition_rejects_count_field(self):
        with pytest.raises(PydanticValidationError):
            PublicConditionView(
                key="poisoned",
                label="Poisoned",
                urgency="normal",
                rounds_hint="Holding",
                summary_text="...",
                acknowledged_count=3,
            )
