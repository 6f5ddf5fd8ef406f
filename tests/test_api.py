"""Summary: API integration tests.

Importance: Validates FastAPI endpoints against core workflows.
Alternatives: Use manual curl testing only.
"""

from __future__ import annotations

import json
import time
import urllib.parse
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from channelnexus import oauth
from channelnexus.api import create_app
from channelnexus.app import Session
from channelnexus.config import AppConfig
from channelnexus.errors import TransientNetworkError
from channelnexus.models import User


FIXTURE = [
    {
        "id": "m1",
        "sender_name": "Ana Ruiz",
        "content": "Can we move the launch review?",
        "created_at": "2024-05-01T09:00:00",
        "thread_id": "t1",
    },
    {
        "id": "m2",
        "sender_name": "Ben Okafor",
        "content": "Thursday works.",
        "created_at": "2024-05-01T09:05:00",
        "status": "read",
        "thread_id": "t1",
        "parent_id": "m1",
    },
    {
        "id": "m3",
        "sender_name": "Chen Li",
        "content": "Release notes attached",
        "created_at": "2024-05-01T10:30:00",
        "is_starred": True,
        "attachments": [
            {"id": "a1", "name": "notes.pdf", "mime_type": "application/pdf", "url": "https://x/notes.pdf", "size": 12}
        ],
    },
]


def _build_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    """Summary: Build an AppConfig for API tests.

    Importance: Ensures tests use isolated storage.
    Alternatives: Load AppConfig from environment variables.
    """

    values: dict[str, Any] = dict(
        db_path=str(tmp_path / "api.db"),
        api_host="127.0.0.1",
        api_port=8000,
        app_origin="http://localhost:8000",
        default_user_name="Local User",
        default_user_email="local@channelnexus",
        api_key="",
        token_secret="secret",
        slack_client_id="",
        slack_client_secret="",
        slack_redirect_uri="http://localhost:8000/oauth/slack/callback",
        slack_token_url="https://slack.test/api/oauth.v2.access",
        discord_client_id="",
        discord_client_secret="",
        discord_redirect_uri="http://localhost:8000/oauth/discord/callback",
        discord_token_url="https://discord.test/api/oauth2/token",
        discord_identity_url="https://discord.test/api/users/@me",
    )
    values.update(overrides)
    return AppConfig(**values)


def _slack_config(tmp_path: Path, **overrides: Any) -> AppConfig:
    return _build_config(tmp_path, slack_client_id="slack-client", slack_client_secret="slack-secret", **overrides)


def _fixture(tmp_path: Path) -> str:
    path = tmp_path / "mock_messages.json"
    path.write_text(json.dumps(FIXTURE), encoding="utf-8")
    return str(path)


def _seed_inbox(client: TestClient, tmp_path: Path) -> str:
    channel = client.post("/channels", json={"provider_type": "gmail", "display_name": "Work Mail"})
    assert channel.status_code == 200
    channel_id = channel.json()["id"]
    ingested = client.post("/ingest/mock", json={"channel_id": channel_id, "fixture_path": _fixture(tmp_path)})
    assert ingested.json() == {"ingested": 3}
    return channel_id


def _second_user(app: Any, name: str = "Bob") -> tuple[Session, dict[str, str]]:
    context = app.state.context
    user_id = context.store.ensure_user(User(display_name=name, email=f"{name.lower()}@channelnexus"))
    api_keys = context.services_for_session(context.default_session()).api_keys
    _key_id, token = api_keys.create_api_key(user_id, label=name.lower())
    return context.session_for_user(user_id), {"X-API-Key": token}


def _url_state(url: str) -> str:
    return urllib.parse.parse_qs(urllib.parse.urlparse(url).query)["state"][0]


def _wait_for_attempt(
    client: TestClient, provider: str, headers: dict[str, str] | None = None
) -> dict[str, Any]:
    status: dict[str, Any] = {}
    for _ in range(200):
        status = client.get(f"/channels/connect/{provider}", headers=headers).json()
        if status["attempt"] and status["attempt"]["state"] in {"connected", "failed", "timed_out"}:
            break
        time.sleep(0.01)
    return status


def test_health(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        assert client.get("/health").json() == {"status": "ok"}


def test_api_ingest_and_thread_view(tmp_path: Path) -> None:
    """Summary: Verify ingestion feeds listing, threading, and counts.

    Importance: Confirms the HTTP layer wires into ingestion and storage.
    Alternatives: Validate only the CLI ingestion workflow.
    """

    with TestClient(create_app(_build_config(tmp_path))) as client:
        channel_id = _seed_inbox(client, tmp_path)
        messages = client.get("/messages").json()
        assert len(messages) == 3
        assert client.get("/messages/unread-count").json() == {"unread": 2}

        threads = client.get("/messages/threads").json()
        assert [root["id"] for root in threads] == [f"{channel_id}:m3", f"{channel_id}:m1"]
        assert [reply["id"] for reply in threads[1]["replies"]] == [f"{channel_id}:m2"]
        assert threads[0]["attachments"][0]["name"] == "notes.pdf"

        starred = client.get("/messages", params={"view": "starred"}).json()
        assert [item["id"] for item in starred] == [f"{channel_id}:m3"]
        search = client.get("/messages", params={"search": "thursday"}).json()
        assert [item["id"] for item in search] == [f"{channel_id}:m2"]
        assert client.get("/messages", params={"view": "bogus"}).status_code == 422


def test_api_message_lifecycle(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        channel_id = _seed_inbox(client, tmp_path)
        root_id = f"{channel_id}:m1"

        assert client.post(f"/messages/{root_id}/read").json()["status"] == "read"
        reply = client.post(f"/messages/{channel_id}:m2/reply", json={"content": "Great, see you then"}).json()
        assert reply["thread_id"] == f"{channel_id}:t1"
        assert reply["parent_id"] == f"{channel_id}:m2"
        assert reply["sender_name"] == "Local User"

        starred = client.post(f"/messages/{root_id}/star", json={"starred": True}).json()
        assert starred["is_starred"] is True
        archived = client.post(f"/messages/{root_id}/archive").json()
        assert archived["status"] == "archived"
        assert client.post(f"/messages/{root_id}/read").json()["status"] == "archived"

        assert client.post("/messages/missing/reply", json={"content": "hi"}).status_code == 404
        assert client.post(f"/messages/{root_id}/reply", json={"content": ""}).status_code == 422


def test_api_channel_management(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        created = client.post("/channels", json={"provider_type": "teams", "display_name": "Ops"})
        channel_id = created.json()["id"]
        assert [item["display_name"] for item in client.get("/channels").json()] == ["Ops"]
        assert client.post("/channels", json={"provider_type": "slack", "display_name": "x"}).status_code == 400
        assert client.delete(f"/channels/{channel_id}").json()["deleted"] is True
        assert client.delete(f"/channels/{channel_id}").status_code == 404
        assert client.get("/channels").json() == []
        titles = [notice["title"] for notice in client.get("/notices").json()]
        assert titles == ["Channel connected", "Channel disconnected"]


def test_exchange_reports_configuration_error(tmp_path: Path) -> None:
    """Summary: Verify missing client credentials map to the configuration error contract.

    Importance: Clients distinguish non-retryable deployment problems from user errors.
    Alternatives: Return a generic 500 error.
    """

    with TestClient(create_app(_build_config(tmp_path))) as client:
        response = client.get("/oauth/slack")
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Configuration error"
        assert "SLACK_CLIENT_ID" in body["details"]
        assert client.get("/oauth/gmail").status_code == 400


def test_exchange_url_and_code(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    responses = [(200, {"ok": True, "access_token": "xoxb", "team": {"name": "Acme", "id": "T1"}})]
    monkeypatch.setattr(oauth, "_send", lambda request: responses.pop(0))
    with TestClient(create_app(_slack_config(tmp_path))) as client:
        url = client.get("/oauth/slack").json()["url"]
        assert "client_id=slack-client" in url
        payload = client.get("/oauth/slack", params={"code": "abc"}).json()
        assert payload == {"access_token": "xoxb", "identity_name": "Acme", "identity_id": "T1"}


def test_exchange_rejected_and_transient(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    with TestClient(create_app(_slack_config(tmp_path))) as client:
        monkeypatch.setattr(oauth, "_send", lambda request: (200, {"ok": False, "error": "invalid_code"}))
        rejected = client.get("/oauth/slack", params={"code": "used"})
        assert rejected.status_code == 400
        assert "invalid_code" in rejected.json()["error"]

        def unreachable(request):
            raise TransientNetworkError("Could not reach slack")

        monkeypatch.setattr(oauth, "_send", unreachable)
        failed = client.get("/oauth/slack", params={"code": "abc"})
        assert failed.status_code == 502
        assert failed.json() == {"error": "Could not reach slack"}


def test_callback_page_for_declined_authorization(tmp_path: Path) -> None:
    with TestClient(create_app(_slack_config(tmp_path))) as client:
        response = client.get("/oauth/discord/callback", params={"error": "access_denied"})
        assert response.status_code == 200
        assert "DISCORD_OAUTH_ERROR" in response.text
        assert "Authentication Failed" in response.text


def test_server_driven_connect(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify a connect attempt completes when the relay page is loaded.

    Importance: Exercises coordinator, relay, exchange, and registry end to end.
    Alternatives: Test each component in isolation only.
    """

    monkeypatch.setattr(
        oauth,
        "_send",
        lambda request: (200, {"ok": True, "access_token": "xoxb", "team": {"name": "Acme", "id": "T1"}}),
    )
    with TestClient(create_app(_slack_config(tmp_path))) as client:
        started = client.post("/channels/connect/slack")
        assert started.status_code == 200
        assert started.json()["url"].startswith("https://slack.com/oauth/v2/authorize?")
        assert started.json()["state"] == "awaiting_callback"

        in_flight = client.post("/channels/connect/slack")
        assert in_flight.status_code == 409

        state = _url_state(started.json()["url"])
        page = client.get("/oauth/slack/callback", params={"code": "abc", "state": state})
        assert "Authentication Successful!" in page.text

        status = _wait_for_attempt(client, "slack")
        assert status["attempt"]["state"] == "connected"
        assert status["connecting"] is False

        channels = client.get("/channels").json()
        assert [(item["provider_type"], item["display_name"]) for item in channels] == [("slack", "Acme")]
        assert "xoxb" not in json.dumps(channels)


def test_server_driven_connect_configuration_error(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        response = client.post("/channels/connect/discord")
        assert response.status_code == 500
        assert response.json()["error"] == "Configuration error"
        status = client.get("/channels/connect/discord").json()
        assert status["attempt"]["state"] == "failed"
        assert client.post("/channels/connect/gmail").status_code == 400


def test_callback_settles_only_the_attempt_that_opened_it(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Summary: Verify one user's callback never connects another user's attempt.

    Importance: Every session shares the opener bus, so the echoed state is what keeps
    credentials with the user who authorized them.
    Alternatives: Keep one message bus per session.
    """

    monkeypatch.setattr(
        oauth,
        "_send",
        lambda request: (200, {"ok": True, "access_token": "xoxb-alice", "team": {"name": "Alice Co", "id": "T1"}}),
    )
    app = create_app(_slack_config(tmp_path))
    with TestClient(app) as client:
        _bob_session, bob = _second_user(app)
        alice_url = client.post("/channels/connect/slack").json()["url"]
        bob_url = client.post("/channels/connect/slack", headers=bob).json()["url"]
        assert _url_state(alice_url) != _url_state(bob_url)

        client.get("/oauth/slack/callback", params={"code": "alice-code", "state": _url_state(alice_url)})
        assert _wait_for_attempt(client, "slack")["attempt"]["state"] == "connected"
        assert [item["display_name"] for item in client.get("/channels").json()] == ["Alice Co"]

        client.get("/oauth/slack/callback", params={"code": "stray-code"})
        time.sleep(0.05)
        assert client.get("/channels", headers=bob).json() == []
        bob_status = client.get("/channels/connect/slack", headers=bob).json()
        assert bob_status["connecting"] is True
        assert bob_status["attempt"]["state"] == "awaiting_callback"


def test_message_observers_are_scoped_to_their_user(tmp_path: Path) -> None:
    app = create_app(_build_config(tmp_path))
    with TestClient(app) as client:
        bob_session, _bob = _second_user(app)
        context = app.state.context
        seen_local: list[Any] = []
        seen_bob: list[Any] = []
        context.services_for_session(context.default_session()).messages.subscribe(seen_local.append)
        context.services_for_session(bob_session).messages.subscribe(seen_bob.append)

        channel_id = _seed_inbox(client, tmp_path)
        assert client.post(f"/messages/{channel_id}:m1/read").json()["status"] == "read"
        assert [batch[0].id for batch in seen_local] == [f"{channel_id}:m1"]
        assert seen_bob == []


def test_reingest_reports_only_new_messages(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        channel_id = _seed_inbox(client, tmp_path)
        again = client.post("/ingest/mock", json={"channel_id": channel_id, "fixture_path": _fixture(tmp_path)})
        assert again.json() == {"ingested": 0}


def test_api_key_sessions(tmp_path: Path) -> None:
    """Summary: Verify deployment and per-user keys resolve to sessions.

    Importance: Every request acts for an explicit user.
    Alternatives: Trust all requests in local mode.
    """

    with TestClient(create_app(_build_config(tmp_path, api_key="master"))) as client:
        assert client.get("/channels").status_code == 401
        assert client.get("/channels", headers={"X-API-Key": "wrong"}).status_code == 401
        created = client.post("/api-keys", json={"label": "ci"}, headers={"X-API-Key": "master"})
        token = created.json()["token"]
        bearer = {"Authorization": f"Bearer {token}"}
        assert client.get("/channels", headers=bearer).status_code == 200
        keys = client.get("/api-keys", headers=bearer).json()
        assert [key["label"] for key in keys] == ["ci"]
        assert client.delete(f"/api-keys/{created.json()['id']}", headers={"X-API-Key": "master"}).status_code == 200
        assert client.get("/channels", headers=bearer).status_code == 401


def test_profile_and_settings(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        profile = client.patch("/profile", json={"display_name": "Sam"}).json()
        assert profile["display_name"] == "Sam"
        assert client.patch("/profile", json={"display_name": "  "}).status_code == 400

        settings = client.get("/settings/notifications").json()
        assert settings == {"enable_push": True, "enable_email": True, "enable_sound": True, "muted_channels": []}
        updated = client.patch("/settings/notifications", json={"enable_sound": False}).json()
        assert updated["enable_sound"] is False
        assert updated["enable_push"] is True

        channel_id = _seed_inbox(client, tmp_path)
        muted = client.post(f"/settings/notifications/mute/{channel_id}").json()
        assert muted["muted_channels"] == [channel_id]
        unmuted = client.post(f"/settings/notifications/mute/{channel_id}").json()
        assert unmuted["muted_channels"] == []
        assert client.post("/settings/notifications/mute/unknown").status_code == 404

        reply = client.post(f"/messages/{channel_id}:m1/reply", json={"content": "On it"}).json()
        assert reply["sender_name"] == "Sam"


def test_tickets_and_stats(tmp_path: Path) -> None:
    with TestClient(create_app(_build_config(tmp_path))) as client:
        ticket = client.post("/tickets", json={"subject": "Slack sync stalled", "priority": "high"}).json()
        assert ticket["status"] == "open"
        updated = client.patch(f"/tickets/{ticket['id']}", json={"status": "in_progress"}).json()
        assert updated["status"] == "in_progress"
        assert client.patch(f"/tickets/{ticket['id']}", json={"status": "bogus"}).status_code == 422
        assert client.post("/tickets", json={"subject": "x", "priority": "urgent"}).status_code == 400
        assert [item["id"] for item in client.get("/tickets").json()] == [ticket["id"]]

        _seed_inbox(client, tmp_path)
        stats = client.get("/stats").json()
        assert stats == {"channels": 1, "messages": 3, "unread": 2, "archived": 0, "open_tickets": 1}

        assert client.delete(f"/tickets/{ticket['id']}").json()["deleted"] is True
        assert client.delete(f"/tickets/{ticket['id']}").status_code == 404
