"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Auth guards, request validation and response bodies of the migration and
webhook routes, with a mocked bot attached to the app.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN_KEY, API_KEY
from tally.api.main import create_app
from tally.api.routes.webhooks import deployment_message, sign_body, verify_signature
from tally.services import channel_service
from tally.services.migration_service import ChannelInfo, ChannelKind, MigrationReport

TEXT = ChannelInfo("500", "general", "text", ChannelKind.TEXT)
VOICE = ChannelInfo("700", "lounge", "voice", None)


def _spawn(coro, name=None):
    coro.close()
    return MagicMock()


@pytest.fixture
def bot():
    channels = {"500": TEXT, "700": VOICE}
    mock = MagicMock()
    mock.gateway.resolve_channel = AsyncMock(side_effect=channels.get)
    mock.gateway.bot_status.return_value = {
        "isReady": True, "guildCount": 1, "userCount": 10, "uptime": 60,
    }
    mock.migrations.last_report = None
    mock.spawn = MagicMock(side_effect=_spawn)
    return mock


@pytest.fixture
def client(db_engine, bot):
    return TestClient(create_app(db_engine, bot), raise_server_exceptions=False)


def _auth(key: str = API_KEY) -> dict:
    return {"Authorization": f"Bearer {key}"}


def _admin() -> dict:
    return {**_auth(), "X-Admin-Key": ADMIN_KEY}


# ===========================================================================
# Health
# ===========================================================================
class TestHealth:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_discord_health_needs_no_auth(self, client):
        resp = client.get("/api/discord/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuth:
    def test_missing_bearer(self, client):
        resp = client.get("/api/discord/status")
        assert resp.status_code == 401
        assert "error" in resp.json()

    def test_wrong_bearer(self, client):
        resp = client.get("/api/discord/status", headers=_auth("nope"))
        assert resp.status_code == 401

    def test_migrate_without_admin_key(self, client):
        resp = client.post("/api/discord/migrate", json={"channelId": "500"}, headers=_auth())
        assert resp.status_code == 403

    def test_migrate_with_wrong_admin_key(self, client):
        headers = {**_auth(), "X-Admin-Key": "nope"}
        resp = client.post("/api/discord/migrate", json={"channelId": "500"}, headers=headers)
        assert resp.status_code == 403

    def test_no_bot_attached(self, db_engine):
        client = TestClient(create_app(db_engine), raise_server_exceptions=False)
        resp = client.get("/api/discord/status", headers=_auth())
        assert resp.status_code == 503


# ===========================================================================
# POST /api/discord/migrate
# ===========================================================================
class TestMigrate:
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"channelId": ""},
            {"channelId": 500},
            {"channelId": "500", "limit": 0},
            {"channelId": "500", "limit": "10"},
        ],
    )
    def test_invalid_body(self, client, bot, body):
        resp = client.post("/api/discord/migrate", json=body, headers=_admin())
        assert resp.status_code == 400
        assert "error" in resp.json()
        bot.spawn.assert_not_called()

    def test_unknown_channel(self, client, bot):
        resp = client.post("/api/discord/migrate", json={"channelId": "404"}, headers=_admin())
        assert resp.status_code == 404
        bot.spawn.assert_not_called()

    def test_unsupported_channel(self, client, bot):
        resp = client.post("/api/discord/migrate", json={"channelId": "700"}, headers=_admin())
        assert resp.status_code == 400
        assert resp.json()["channelType"] == "voice"
        bot.spawn.assert_not_called()

    def test_accepted(self, client, bot):
        resp = client.post(
            "/api/discord/migrate", json={"channelId": "500", "limit": 250}, headers=_admin()
        )
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "processing"
        assert body["limit"] == 250
        assert body["channelInfo"] == {
            "id": "500",
            "name": "general",
            "type": "text",
            "isTextBased": True,
            "isForum": False,
        }
        bot.spawn.assert_called_once()
        assert bot.spawn.call_args.kwargs["name"] == "migration-500"

    def test_default_limit(self, client):
        resp = client.post("/api/discord/migrate", json={"channelId": "500"}, headers=_admin())
        assert resp.json()["limit"] == 1000


# ===========================================================================
# Status & channel info
# ===========================================================================
class TestStatus:
    def test_status(self, client):
        resp = client.get("/api/discord/status", headers=_auth())
        assert resp.status_code == 200
        body = resp.json()
        assert body["botStatus"]["isReady"] is True
        assert body["lastMigration"] is None

    def test_status_reports_last_migration(self, client, bot):
        bot.migrations.last_report = MigrationReport(channel_id="500", limit=10, granted=7)
        body = client.get("/api/discord/status", headers=_auth()).json()
        assert body["lastMigration"]["granted"] == 7
        assert body["lastMigration"]["channelId"] == "500"

    def test_channel_info(self, client):
        resp = client.get("/api/discord/channels/500", headers=_auth())
        assert resp.status_code == 200
        assert resp.json()["channelInfo"]["name"] == "general"

    def test_channel_info_not_found(self, client):
        resp = client.get("/api/discord/channels/404", headers=_auth())
        assert resp.status_code == 404


# ===========================================================================
# GET /api/discord/reward-channels
# ===========================================================================
class TestRewardChannels:
    def test_requires_api_key(self, client):
        assert client.get("/api/discord/reward-channels").status_code == 401

    def test_lists_active_channels(self, client, seeded_engine):
        resp = client.get("/api/discord/reward-channels", headers=_auth())
        assert resp.status_code == 200
        channels = resp.json()["channels"]
        assert [c["channelId"] for c in channels] == ["500", "600"]
        assert channels[1] == {
            "channelId": "600",
            "channelName": "forum",
            "messageReward": 0,
            "commentReward": 5,
            "forumPostReward": 3,
            "isActive": True,
        }

    def test_inactive_only_on_request(self, client, seeded_engine):
        channel_service.set_rewardable_channel(seeded_engine, "500", is_active=False)

        active = client.get("/api/discord/reward-channels", headers=_auth()).json()
        everything = client.get(
            "/api/discord/reward-channels?include_inactive=true", headers=_auth()
        ).json()

        assert [c["channelId"] for c in active["channels"]] == ["600"]
        assert [c["channelId"] for c in everything["channels"]] == ["500", "600"]
        assert everything["channels"][0]["isActive"] is False


# ===========================================================================
# Vercel webhook
# ===========================================================================
PAYLOAD = {
    "type": "deployment.succeeded",
    "payload": {
        "target": "production",
        "deployment": {"id": "dpl_1", "name": "tally-web", "url": "tally-web.vercel.app"},
    },
}


class TestVercelWebhook:
    @pytest.fixture(autouse=True)
    def _env(self, monkeypatch):
        monkeypatch.setenv("VERCEL_INTEGRATION_SECRET", "whsec")
        monkeypatch.setenv("VERCEL_NOTIFICATION_CHANNEL_ID", "800")

    def _post(self, client, raw: bytes, signature: str | None):
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["x-vercel-signature"] = signature
        return client.post("/api/vercel-webhook", content=raw, headers=headers)

    def test_signature_helpers(self):
        sig = sign_body(b"{}", "whsec")
        assert verify_signature(b"{}", sig, "whsec")
        assert not verify_signature(b"{ }", sig, "whsec")
        assert not verify_signature(b"{}", None, "whsec")

    def test_bad_signature(self, client, bot):
        resp = self._post(client, json.dumps(PAYLOAD).encode(), "deadbeef")
        assert resp.status_code == 403
        assert resp.json()["code"] == "invalid_signature"
        bot.get_channel.assert_not_called()

    def test_missing_signature(self, client):
        resp = self._post(client, json.dumps(PAYLOAD).encode(), None)
        assert resp.status_code == 403

    def test_valid_signature_announces(self, client, bot):
        channel = MagicMock()
        channel.send = AsyncMock()
        bot.get_channel.return_value = channel
        raw = json.dumps(PAYLOAD).encode()

        resp = self._post(client, raw, sign_body(raw, "whsec"))

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        bot.get_channel.assert_called_once_with(800)
        text = channel.send.await_args.args[0]
        assert "deployment.succeeded" in text
        assert "tally-web" in text

    @pytest.mark.parametrize("raw", [b"[]", b'"deployment"', b"null"])
    def test_signed_body_must_be_an_object(self, client, bot, raw):
        resp = self._post(client, raw, sign_body(raw, "whsec"))
        assert resp.status_code == 400
        assert "object" in resp.json()["error"]
        bot.get_channel.assert_not_called()

    def test_missing_channel(self, client, bot):
        bot.get_channel.return_value = None
        raw = json.dumps(PAYLOAD).encode()
        resp = self._post(client, raw, sign_body(raw, "whsec"))
        assert resp.status_code == 500

    def test_message_falls_back_to_deployment_url(self):
        text = deployment_message(PAYLOAD)
        assert "tally-web.vercel.app" in text
        assert "Deployment ID: dpl_1" in text
