"""Summary: Tests for the credential exchange service.

Importance: Ensures authorization URLs and code exchanges follow each provider's contract.
Alternatives: Validate OAuth flows manually.
"""

from __future__ import annotations

import urllib.parse
import urllib.request
from typing import Any

import pytest

from channelnexus import oauth
from channelnexus.config import AppConfig
from channelnexus.errors import (
    MissingTokenError,
    OAuthConfigurationError,
    ProviderRejectedError,
    TransientNetworkError,
)
from channelnexus.models import ProviderType
from channelnexus.oauth import (
    CredentialExchangeService,
    ExchangeResult,
    build_discord_auth_url,
    build_slack_auth_url,
    parse_oauth_provider,
)


def _config(**overrides: Any) -> AppConfig:
    values: dict[str, Any] = dict(
        db_path="test.db",
        api_host="127.0.0.1",
        api_port=8000,
        app_origin="http://localhost:8000",
        default_user_name="Local User",
        default_user_email="local@channelnexus",
        api_key="",
        token_secret="secret",
        slack_client_id="slack-client",
        slack_client_secret="slack-secret",
        slack_redirect_uri="http://localhost:8000/oauth/slack/callback",
        slack_token_url="https://slack.test/api/oauth.v2.access",
        discord_client_id="discord-client",
        discord_client_secret="discord-secret",
        discord_redirect_uri="http://localhost:8000/oauth/discord/callback",
        discord_token_url="https://discord.test/api/oauth2/token",
        discord_identity_url="https://discord.test/api/users/@me",
    )
    values.update(overrides)
    return AppConfig(**values)


class FakeTransport:
    """Summary: Records outgoing requests and replays canned responses.

    Importance: Lets exchange tests assert one token call per code without a network.
    Alternatives: Run a local HTTP server.
    """

    def __init__(self, responses: list[tuple[int, dict[str, Any]]]) -> None:
        self._responses = list(responses)
        self.requests: list[urllib.request.Request] = []

    def __call__(self, request: urllib.request.Request) -> tuple[int, dict[str, Any]]:
        self.requests.append(request)
        return self._responses.pop(0)


def test_slack_auth_url_includes_client_scopes_and_redirect() -> None:
    url = build_slack_auth_url(_config())
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    assert url.startswith("https://slack.com/oauth/v2/authorize?")
    assert query["client_id"] == ["slack-client"]
    assert query["scope"] == ["channels:history,channels:read,chat:write,users:read"]
    assert query["redirect_uri"] == ["http://localhost:8000/oauth/slack/callback"]


def test_discord_auth_url_requests_code_flow() -> None:
    url = build_discord_auth_url(_config())
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["identify guilds"]
    assert "%20" in url


def test_authorization_url_requires_client_credentials() -> None:
    """Summary: Verify missing client secrets surface as configuration errors.

    Importance: Configuration errors are fatal and must not be retried.
    Alternatives: Return an authorization URL with an empty client ID.
    """

    service = CredentialExchangeService(_config(slack_client_secret=""))
    with pytest.raises(OAuthConfigurationError) as excinfo:
        service.authorization_url(ProviderType.SLACK)
    assert "SLACK_CLIENT_ID" in str(excinfo.value)
    assert excinfo.value.retryable is False


def test_parse_oauth_provider_rejects_other_providers() -> None:
    assert parse_oauth_provider("Slack") == ProviderType.SLACK
    with pytest.raises(ValueError):
        parse_oauth_provider("gmail")
    with pytest.raises(ValueError):
        parse_oauth_provider("myspace")


def test_slack_exchange_uses_team_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport(
        [(200, {"ok": True, "access_token": "xoxb", "team": {"name": "Acme", "id": "T1"}})]
    )
    monkeypatch.setattr(oauth, "_send", transport)
    result = CredentialExchangeService(_config()).exchange_code(ProviderType.SLACK, "code-1")
    assert result == ExchangeResult(
        access_token="xoxb", refresh_token=None, identity_name="Acme", identity_id="T1"
    )
    assert len(transport.requests) == 1
    body = urllib.parse.parse_qs(transport.requests[0].data.decode("utf-8"))
    assert body["code"] == ["code-1"]
    assert body["redirect_uri"] == ["http://localhost:8000/oauth/slack/callback"]


def test_slack_exchange_rejected_code(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport([(200, {"ok": False, "error": "invalid_code"})])
    monkeypatch.setattr(oauth, "_send", transport)
    with pytest.raises(ProviderRejectedError) as excinfo:
        CredentialExchangeService(_config()).exchange_code(ProviderType.SLACK, "used")
    assert "invalid_code" in str(excinfo.value)
    assert len(transport.requests) == 1


def test_discord_exchange_fetches_identity(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify Discord exchange reads the user identity with the new token.

    Importance: Discord channels are named after the authorizing user.
    Alternatives: Name every Discord channel generically.
    """

    transport = FakeTransport(
        [
            (200, {"access_token": "discord-token", "refresh_token": "refresh"}),
            (200, {"id": 42, "username": "ana"}),
        ]
    )
    monkeypatch.setattr(oauth, "_send", transport)
    payload = CredentialExchangeService(_config()).exchange_payload(ProviderType.DISCORD, "code-2")
    assert payload == {
        "access_token": "discord-token",
        "refresh_token": "refresh",
        "identity_name": "ana",
        "identity_id": "42",
    }
    assert transport.requests[1].get_header("Authorization") == "Bearer discord-token"


def test_discord_exchange_without_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(oauth, "_send", FakeTransport([(200, {"token_type": "Bearer"})]))
    with pytest.raises(MissingTokenError):
        CredentialExchangeService(_config()).exchange_code(ProviderType.DISCORD, "code-3")


def test_exchange_result_treats_embedded_error_as_failure() -> None:
    with pytest.raises(ProviderRejectedError):
        ExchangeResult.from_payload(ProviderType.SLACK, {"error": "expired", "access_token": "x"})
    with pytest.raises(MissingTokenError):
        ExchangeResult.from_payload(ProviderType.SLACK, {"identity_name": "Acme"})


def test_authorization_url_carries_attempt_state() -> None:
    service = CredentialExchangeService(_config())
    for provider in (ProviderType.SLACK, ProviderType.DISCORD):
        url = service.authorization_url(provider, state="nonce-1")
        assert urllib.parse.parse_qs(urllib.parse.urlparse(url).query)["state"] == ["nonce-1"]
    assert "state=" not in service.authorization_url(ProviderType.SLACK)


class _SlowResponse:
    status = 200

    def read(self) -> bytes:
        raise TimeoutError("read timed out")

    def __enter__(self) -> "_SlowResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


def test_read_timeout_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(oauth.urllib.request, "urlopen", lambda request, timeout: _SlowResponse())
    with pytest.raises(TransientNetworkError) as excinfo:
        CredentialExchangeService(_config()).exchange_code(ProviderType.SLACK, "code-4")
    assert excinfo.value.retryable is True
