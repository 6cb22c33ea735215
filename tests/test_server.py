"""
Tests for the transparency HTTP API.

Exercises every route through Starlette's TestClient and checks the
error-to-status mapping.
"""

import asyncio

import pytest
from starlette.testclient import TestClient

from condition_transparency.exceptions import StorageFailure
from condition_transparency.models import ExportStatus
from condition_transparency.server import VIEWER_HEADER, TransparencyServer

from conftest import DM, GROUP_ID, OTHER_PLAYER, OWNER, PLAYER


@pytest.fixture
def client(engine) -> TestClient:
    return TestClient(TransparencyServer(engine).app)


def as_user(user_id: str) -> dict:
    return {VIEWER_HEADER: user_id}


class TestSummaryRoutes:
    """Tests for condition timer routes."""

    def test_requires_viewer(self, client):
        response = client.get(f"/groups/{GROUP_ID}/condition-timers")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_non_member_forbidden(self, client):
        response = client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user("u-stranger"))
        assert response.status_code == 403
        assert "error" in response.json()

    def test_unknown_group(self, client):
        response = client.get("/groups/grp-missing/condition-timers", headers=as_user(PLAYER))
        assert response.status_code == 404

    def test_player_sees_public_view(self, client):
        response = client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user(PLAYER))
        assert response.status_code == 200

        body = response.json()
        assert body["audience"] == "public"
        names = [entry["token_name"] for entry in body["entries"]]
        assert "Cave Lurker" not in names
        for entry in body["entries"]:
            assert "owner_user_id" not in entry
            for condition in entry["conditions"]:
                assert "acknowledged_count" not in condition

    def test_dm_sees_privileged_view(self, client):
        body = client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user(DM)).json()
        assert body["audience"] == "privileged"
        assert "Cave Lurker" in [entry["token_name"] for entry in body["entries"]]
        assert all("acknowledged_count" in c for e in body["entries"] for c in e["conditions"])

    def test_acknowledge(self, client):
        summary = client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user(PLAYER)).json()
        payload = {
            "token_id": "tok-ana",
            "condition_key": "poisoned",
            "summary_generated_at": summary["generated_at"],
        }

        first = client.post(
            f"/groups/{GROUP_ID}/condition-timers/acknowledgements", json=payload, headers=as_user(PLAYER)
        )
        assert first.status_code == 201
        assert first.json()["acknowledgement"]["acknowledged_by_viewer"] is True
        assert "acknowledged_count" not in first.json()["acknowledgement"]

        again = client.post(
            f"/groups/{GROUP_ID}/condition-timers/acknowledgements", json=payload, headers=as_user(PLAYER)
        )
        assert again.status_code == 200

        by_dm = client.post(
            f"/groups/{GROUP_ID}/condition-timers/acknowledgements", json=payload, headers=as_user(DM)
        )
        assert by_dm.json()["acknowledgement"]["acknowledged_count"] == 2

        view = client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user(PLAYER)).json()
        ana = next(e for e in view["entries"] if e["token_id"] == "tok-ana")
        assert ana["conditions"][0]["acknowledged_by_viewer"] is True

    def test_acknowledge_missing_fields(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/condition-timers/acknowledgements",
            json={"token_id": "tok-ana"},
            headers=as_user(PLAYER),
        )
        assert response.status_code == 422
        assert set(response.json()["errors"]) == {"condition_key", "summary_generated_at"}

    def test_invalid_json(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/condition-timers/acknowledgements",
            content=b"{nope",
            headers={**as_user(PLAYER), "Content-Type": "application/json"},
        )
        assert response.status_code == 422
        assert response.json()["errors"] == {"body": "invalid JSON"}

    def test_adjustments(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/condition-timers/adjustments",
            json={"adjustments": [{"token_id": "tok-bram", "condition": "blinded", "delta": 2}]},
            headers=as_user(DM),
        )
        assert response.status_code == 200
        applied = response.json()["applied"]
        assert applied[0]["previous_rounds"] == 3
        assert applied[0]["new_rounds"] == 5

    def test_adjustments_need_list(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/condition-timers/adjustments",
            json={"adjustments": "blinded +2"},
            headers=as_user(DM),
        )
        assert response.status_code == 422

    def test_players_cannot_adjust(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/condition-timers/adjustments",
            json={"adjustments": [{"token_id": "tok-bram", "condition": "blinded", "delta": 2}]},
            headers=as_user(PLAYER),
        )
        assert response.status_code == 403


class TestShareRoutes:
    """Tests for share link routes."""

    def create_share(self, client, **body):
        response = client.post(f"/groups/{GROUP_ID}/shares", json=body, headers=as_user(OWNER))
        assert response.status_code == 201
        return response.json()["share"]

    def test_create_and_resolve(self, client):
        share = self.create_share(client, expires_in_hours=48)
        assert len(share["token"]) == 64
        assert share["state"] == "active"

        response = client.get(share["url_path"], headers={"User-Agent": "pytest-browser"})
        assert response.status_code == 200
        body = response.json()
        assert body["share"]["redacted"] is False
        assert body["share"]["access_count"] == 1
        assert body["summary"]["visibility_mode"] == "counts"
        assert "token" not in body["share"]

    def test_unknown_token(self, client):
        assert client.get("/shares/not-a-real-token").status_code == 404

    def test_player_cannot_share(self, client):
        response = client.post(f"/groups/{GROUP_ID}/shares", json={}, headers=as_user(PLAYER))
        assert response.status_code == 403

    def test_invalid_expiry(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/shares", json={"expires_in_hours": 0}, headers=as_user(OWNER)
        )
        assert response.status_code == 422
        assert "expires_in_hours" in response.json()["errors"]

    def test_extend(self, client):
        share = self.create_share(client, expires_in_hours=2)
        response = client.post(
            f"/groups/{GROUP_ID}/shares/{share['id']}/extend",
            json={"never_expires": True},
            headers=as_user(OWNER),
        )
        assert response.status_code == 200
        assert response.json()["share"]["expires_at"] is None

    def test_revoke_degrades_share(self, client):
        share = self.create_share(client)
        response = client.delete(f"/groups/{GROUP_ID}/shares/{share['id']}", headers=as_user(OWNER))
        assert response.status_code == 200
        assert response.json()["share"]["state"] == "revoked"

        resolved = client.get(share["url_path"]).json()
        assert resolved["share"]["state"] == "revoked"
        assert resolved["share"]["redacted"] is True
        assert resolved["summary"]["entries"] == []

    def test_revoke_unknown_share(self, client):
        response = client.delete(f"/groups/{GROUP_ID}/shares/missing", headers=as_user(OWNER))
        assert response.status_code == 404


class TestConsentRoutes:
    """Tests for consent recording."""

    def test_member_records_own_consent(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/consents",
            json={"granted": True, "visibility": "details"},
            headers=as_user(PLAYER),
        )
        assert response.status_code == 201
        consent = response.json()["consent"]
        assert consent["user_id"] == PLAYER
        assert consent["action"] == "granted"

    def test_player_cannot_record_for_others(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/consents",
            json={"user_id": OTHER_PLAYER, "granted": True},
            headers=as_user(PLAYER),
        )
        assert response.status_code == 403

    def test_dm_records_for_others(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/consents",
            json={"user_id": OTHER_PLAYER, "granted": False},
            headers=as_user(DM),
        )
        assert response.status_code == 201
        assert response.json()["consent"]["recorded_by"] == DM

    def test_granted_required(self, client):
        response = client.post(f"/groups/{GROUP_ID}/consents", json={}, headers=as_user(PLAYER))
        assert response.status_code == 422


class TestExportRoutes:
    """Tests for exports and webhooks."""

    def test_export_is_accepted_and_processed(self, client, engine):
        response = client.post(
            f"/groups/{GROUP_ID}/exports", json={"format": "csv"}, headers=as_user(OWNER)
        )
        assert response.status_code == 202
        export = response.json()["export"]
        assert export["status"] == "pending"

        stored = engine.store.get_export(export["id"])
        assert stored.status == ExportStatus.COMPLETED
        assert stored.file_path.endswith(".csv")

    def test_player_cannot_export(self, client):
        response = client.post(f"/groups/{GROUP_ID}/exports", json={}, headers=as_user(PLAYER))
        assert response.status_code == 403

    def test_register_webhook(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/webhooks",
            json={"url": "https://hooks.example.com/ct"},
            headers=as_user(DM),
        )
        assert response.status_code == 201
        webhook = response.json()["webhook"]
        assert webhook["active"] is True
        assert len(webhook["secret"]) == 32

    def test_invalid_webhook_url(self, client):
        response = client.post(
            f"/groups/{GROUP_ID}/webhooks", json={"url": "not a url"}, headers=as_user(DM)
        )
        assert response.status_code == 422


class TestMaintenanceRoute:
    """Tests for the maintenance snapshot route."""

    def test_snapshot(self, client):
        client.post(f"/groups/{GROUP_ID}/shares", json={}, headers=as_user(OWNER))
        response = client.get(f"/groups/{GROUP_ID}/maintenance", headers=as_user(PLAYER))
        assert response.status_code == 200
        body = response.json()
        assert body["needs_attention"] is True
        assert "consent_missing" in body["reasons"]

    def test_members_only(self, client):
        response = client.get(f"/groups/{GROUP_ID}/maintenance", headers=as_user("u-stranger"))
        assert response.status_code == 403


class TestBlockingWork:
    """Tests keeping store access off the event loop."""

    @staticmethod
    def on_event_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def test_engine_calls_run_in_threadpool(self, client, engine, monkeypatch):
        seen = []
        present = engine.presenter.present
        resolve = engine.shares.resolve

        def recording_present(group_id, viewer_id):
            seen.append(("present", self.on_event_loop()))
            return present(group_id, viewer_id)

        def recording_resolve(token, **kwargs):
            seen.append(("resolve", self.on_event_loop()))
            return resolve(token, **kwargs)

        monkeypatch.setattr(engine.presenter, "present", recording_present)
        monkeypatch.setattr(engine.shares, "resolve", recording_resolve)

        assert client.get(f"/groups/{GROUP_ID}/condition-timers", headers=as_user(PLAYER)).status_code == 200
        share = client.post(f"/groups/{GROUP_ID}/shares", json={}, headers=as_user(OWNER)).json()["share"]
        assert client.get(share["url_path"]).status_code == 200

        assert seen == [("present", False), ("resolve", False)]

    def test_storage_failure_is_unavailable(self, client, engine, monkeypatch):
        def failing_insert(share):
            raise StorageFailure("Could not write the shares table", table="shares")

        monkeypatch.setattr(engine.store, "insert_share", failing_insert)
        response = client.post(f"/groups/{GROUP_ID}/shares", json={}, headers=as_user(OWNER))
        assert response.status_code == 503
        assert response.json() == {"error": "Could not write the shares table"}
