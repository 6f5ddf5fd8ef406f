"""Summary: HTTP client for the credential exchange endpoints.

Importance: Lets a coordinator or relay running outside the server reach the exchange service.
Alternatives: Import the exchange service in-process everywhere.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from channelnexus.errors import (
    OAuthConfigurationError,
    ProviderRejectedError,
    TransientNetworkError,
)
from channelnexus.models import ProviderType


logger = logging.getLogger(__name__)


class HttpExchangeClient:
    """Summary: Calls `GET /oauth/{provider}` with or without a code.

    Importance: Mirrors the wire contract so status codes map back onto the error taxonomy.
    Alternatives: Use an HTTP client library such as httpx.
    """

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 10) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def authorization_url(self, provider: ProviderType, state: str | None = None) -> str:
        payload = self._request(provider, {"state": state} if state else {})
        url = payload.get("url")
        if not url:
            raise ProviderRejectedError("No authentication URL returned from server")
        return url

    def exchange_payload(self, provider: ProviderType, code: str) -> dict[str, Any]:
        """Summary: Exchange a code and return the response body.

        Importance: Error bodies are returned as-is so the relay can treat them as failures.
        Alternatives: Raise for every non-2xx response.
        """

        return self._request(provider, {"code": code})

    def _request(self, provider: ProviderType, query: dict[str, str]) -> dict[str, Any]:
        url = f"{self._base_url}/oauth/{provider.value}"
        if query:
            url += "?" + urllib.parse.urlencode(query)
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        request = urllib.request.Request(url, headers=headers, method="GET")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as exc:
            body = _error_body(exc)
            if exc.code >= 500 and body.get("error") == "Configuration error":
                raise OAuthConfigurationError(body.get("details") or body["error"]) from exc
            if exc.code >= 500:
                raise TransientNetworkError(body.get("error") or str(exc.reason)) from exc
            logger.warning("Exchange service returned %s for %s.", exc.code, provider)
            return body
        except urllib.error.URLError as exc:
            raise TransientNetworkError(f"Exchange service unreachable: {exc.reason}") from exc
        except TimeoutError as exc:
            raise TransientNetworkError("Exchange service timed out") from exc
        try:
            body = json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise TransientNetworkError("Exchange service returned an unreadable response") from exc
        if not isinstance(body, dict):
            raise TransientNetworkError("Exchange service returned an unexpected response")
        return body


def _error_body(exc: urllib.error.HTTPError) -> dict[str, Any]:
    raw = exc.read().decode("utf-8")
    try:
        body = json.loads(raw)
    except ValueError:
        return {"error": raw or str(exc.reason)}
    if isinstance(body, dict) and "detail" in body and "error" not in body:
        return {"error": str(body["detail"])}
    return body if isinstance(body, dict) else {"error": str(exc.reason)}
