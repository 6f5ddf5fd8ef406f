"""Summary: Credential exchange service for OAuth channel providers.

Importance: Builds provider authorization URLs and turns authorization codes into credentials.
Alternatives: Use provider SDKs for OAuth flows.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any

from channelnexus.config import AppConfig
from channelnexus.errors import (
    MissingTokenError,
    OAuthConfigurationError,
    ProviderRejectedError,
    TransientNetworkError,
)
from channelnexus.models import OAUTH_PROVIDERS, ProviderType


logger = logging.getLogger(__name__)

SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
DISCORD_AUTHORIZE_URL = "https://discord.com/api/oauth2/authorize"
SLACK_SCOPES = "channels:history,channels:read,chat:write,users:read"
DISCORD_SCOPES = "identify guilds"


@dataclass(frozen=True)
class ExchangeResult:
    """Summary: Normalized outcome of a successful code exchange.

    Importance: Gives the relay page one wire shape regardless of provider.
    Alternatives: Forward raw provider responses to the browser.
    """

    access_token: str
    refresh_token: str | None
    identity_name: str | None
    identity_id: str | None

    @staticmethod
    def from_payload(provider: ProviderType, payload: dict[str, Any]) -> "ExchangeResult":
        """Summary: Parse an exchange service response body.

        Importance: Treats embedded error fields and missing tokens as failures.
        Alternatives: Trust any 200 response as a success.
        """

        if payload.get("error"):
            raise ProviderRejectedError(str(payload["error"]))
        access_token = payload.get("access_token")
        if not access_token:
            raise MissingTokenError(provider.value)
        return ExchangeResult(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            identity_name=payload.get("identity_name"),
            identity_id=payload.get("identity_id"),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"access_token": self.access_token}
        if self.refresh_token:
            payload["refresh_token"] = self.refresh_token
        if self.identity_name is not None:
            payload["identity_name"] = self.identity_name
        if self.identity_id is not None:
            payload["identity_id"] = self.identity_id
        return payload


def parse_oauth_provider(name: str) -> ProviderType:
    """Summary: Resolve a provider path segment into an OAuth-capable provider.

    Importance: Rejects unknown or non-OAuth providers before any network call.
    Alternatives: Route each provider through its own endpoint.
    """

    try:
        provider = ProviderType(name.lower())
    except ValueError as exc:
        raise ValueError(f"Unknown provider: {name}") from exc
    if provider not in OAUTH_PROVIDERS:
        raise ValueError(f"Provider {provider} does not support OAuth")
    return provider


def build_slack_auth_url(config: AppConfig, state: str | None = None) -> str:
    params = {
        "client_id": config.slack_client_id,
        "scope": SLACK_SCOPES,
        "redirect_uri": config.slack_redirect_uri,
    }
    if state:
        params["state"] = state
    return SLACK_AUTHORIZE_URL + "?" + urllib.parse.urlencode(params)


def build_discord_auth_url(config: AppConfig, state: str | None = None) -> str:
    params = {
        "client_id": config.discord_client_id,
        "redirect_uri": config.discord_redirect_uri,
        "response_type": "code",
        "scope": DISCORD_SCOPES,
    }
    if state:
        params["state"] = state
    return DISCORD_AUTHORIZE_URL + "?" + urllib.parse.urlencode(params, quote_via=urllib.parse.quote)


class CredentialExchangeService:
    """Summary: Server side of the OAuth handshake for every configured provider.

    Importance: Keeps client secrets on the server and performs exactly one token call per code.
    Alternatives: Run a separate edge function per provider.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def authorization_url(self, provider: ProviderType, state: str | None = None) -> str:
        """Summary: Return the provider authorization URL.

        Importance: Lets the coordinator open the consent page without knowing client IDs;
        the provider echoes `state` back to the callback so the result reaches one attempt.
        Alternatives: Hardcode authorization URLs in the client.
        """

        self._ensure_configured(provider)
        if provider == ProviderType.SLACK:
            url = build_slack_auth_url(self._config, state)
        else:
            url = build_discord_auth_url(self._config, state)
        logger.info("Generated %s authorization URL.", provider)
        return url

    def exchange_code(self, provider: ProviderType, code: str) -> ExchangeResult:
        """Summary: Exchange an authorization code for credentials and identity.

        Importance: Completes the handshake; codes are single-use so failures are terminal.
        Alternatives: Let the browser call the provider token endpoint directly.
        """

        self._ensure_configured(provider)
        logger.info("Exchanging %s authorization code.", provider)
        if provider == ProviderType.SLACK:
            return self._exchange_slack(code)
        return self._exchange_discord(code)

    def exchange_payload(self, provider: ProviderType, code: str) -> dict[str, Any]:
        return self.exchange_code(provider, code).to_payload()

    def _exchange_slack(self, code: str) -> ExchangeResult:
        _status, data = _post_form(
            self._config.slack_token_url,
            {
                "client_id": self._config.slack_client_id,
                "client_secret": self._config.slack_client_secret,
                "code": code,
                "redirect_uri": self._config.slack_redirect_uri,
            },
        )
        if not data.get("ok"):
            logger.warning("Slack rejected the authorization code: %s", data.get("error"))
            raise ProviderRejectedError(f"Failed to get access token: {data.get('error')}")
        access_token = data.get("access_token")
        if not access_token:
            raise MissingTokenError(ProviderType.SLACK.value)
        team = data.get("team") or {}
        return ExchangeResult(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            identity_name=team.get("name") or "Slack Workspace",
            identity_id=team.get("id") or "",
        )

    def _exchange_discord(self, code: str) -> ExchangeResult:
        status, token_data = _post_form(
            self._config.discord_token_url,
            {
                "client_id": self._config.discord_client_id,
                "client_secret": self._config.discord_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self._config.discord_redirect_uri,
            },
        )
        if status >= 400:
            logger.warning("Discord rejected the authorization code: %s", token_data.get("error"))
            raise ProviderRejectedError(
                f"Failed to get access token: {token_data.get('error') or 'Unknown error'}"
            )
        access_token = token_data.get("access_token")
        if not access_token:
            raise MissingTokenError(ProviderType.DISCORD.value)
        status, user_data = _get_json(
            self._config.discord_identity_url,
            {"Authorization": f"Bearer {access_token}"},
        )
        if status >= 400:
            raise ProviderRejectedError(
                f"Failed to get user data: {user_data.get('message') or 'Unknown error'}"
            )
        return ExchangeResult(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            identity_name=user_data.get("username"),
            identity_id=str(user_data["id"]) if user_data.get("id") is not None else None,
        )

    def _ensure_configured(self, provider: ProviderType) -> None:
        if provider == ProviderType.SLACK:
            client_id, client_secret = self._config.slack_client_id, self._config.slack_client_secret
            names = "SLACK_CLIENT_ID and SLACK_CLIENT_SECRET"
        elif provider == ProviderType.DISCORD:
            client_id = self._config.discord_client_id
            client_secret = self._config.discord_client_secret
            names = "DISCORD_CLIENT_ID and DISCORD_CLIENT_SECRET"
        else:
            raise ValueError(f"Provider {provider} does not support OAuth")
        if not client_id or not client_secret:
            logger.error("Missing %s credentials.", provider)
            raise OAuthConfigurationError(f"Missing {provider} credentials. Please set {names}.")


def _post_form(url: str, payload: dict[str, str]) -> tuple[int, dict[str, Any]]:
    """Summary: Send a form-encoded POST request and parse the JSON body.

    Importance: Avoids new dependencies while supporting OAuth exchanges.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    return _send(request)


def _get_json(url: str, headers: dict[str, str]) -> tuple[int, dict[str, Any]]:
    return _send(urllib.request.Request(url, headers=headers, method="GET"))


def _send(request: urllib.request.Request) -> tuple[int, dict[str, Any]]:
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            return response.status, _parse_body(response.read())
    except urllib.error.HTTPError as exc:
        return exc.code, _parse_body(exc.read())
    except urllib.error.URLError as exc:
        raise TransientNetworkError(f"Could not reach {request.full_url}: {exc.reason}") from exc
    except TimeoutError as exc:
        raise TransientNetworkError(f"Timed out waiting for {request.full_url}") from exc


def _parse_body(raw: bytes) -> dict[str, Any]:
    try:
        parsed = json.loads(raw.decode("utf-8") or "{}")
    except ValueError:
        return {"error": raw.decode("utf-8", errors="replace")[:200]}
    return parsed if isinstance(parsed, dict) else {"error": "Unexpected response"}
