"""Summary: Callback relay page logic for the OAuth popup.

Importance: Bridges the provider redirect, which lands in the popup, back to the opener.
Alternatives: Have the exchange endpoint render the opener script itself.
"""

from __future__ import annotations

import html
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from channelnexus.errors import ConnectError
from channelnexus.messaging import MessageBus, error_message, success_message
from channelnexus.models import ProviderType
from channelnexus.oauth import ExchangeResult


logger = logging.getLogger(__name__)

SUCCESS_CLOSE_DELAY_MS = 1000
FAILURE_CLOSE_DELAY_MS = 5000


class PayloadExchange(Protocol):
    def exchange_payload(self, provider: ProviderType, code: str) -> dict[str, Any]: ...


@dataclass(frozen=True)
class RelayOutcome:
    """Summary: What the relay page decided and posted.

    Importance: Separates the relay decision from HTML rendering.
    Alternatives: Render HTML directly inside the request handler.
    """

    provider: ProviderType
    success: bool
    message: dict[str, Any]
    error: str | None = None

    @property
    def title(self) -> str:
        provider = self.provider.value.capitalize()
        if self.success:
            return f"{provider} Authentication Complete"
        return f"{provider} Authentication Failed"


class CallbackRelay:
    """Summary: Handles the redirect query and posts one typed message to the opener.

    Importance: Always posts, on failure too, so the opener never waits for the timeout.
    Alternatives: Post only on success and let the coordinator time out.
    """

    def __init__(self, exchange: PayloadExchange, opener: MessageBus | None, app_origin: str) -> None:
        self._exchange = exchange
        self._opener = opener
        self._app_origin = app_origin.rstrip("/")

    def handle(self, provider: ProviderType, params: Mapping[str, str]) -> RelayOutcome:
        """Summary: Decide the outcome for one redirect and post it to the opener.

        Importance: The `state` query parameter is echoed so only the attempt that
        opened this popup accepts the result.
        Alternatives: Broadcast results and let every listener claim them.
        """

        state = params.get("state")
        provider_error = params.get("error")
        if provider_error:
            description = params.get("error_description") or provider_error
            return self._fail(provider, f"Authorization was declined: {description}", state)
        code = params.get("code")
        if not code:
            return self._fail(provider, "No authorization code received", state)
        try:
            payload = self._exchange.exchange_payload(provider, code)
            result = ExchangeResult.from_payload(provider, payload)
        except ConnectError as exc:
            return self._fail(provider, str(exc), state)
        except Exception:
            logger.exception("Unexpected %s exchange failure.", provider)
            return self._fail(provider, "Authentication failed", state)
        outcome = RelayOutcome(
            provider=provider,
            success=True,
            message=success_message(provider, result.to_payload(), state),
        )
        self._post(outcome)
        logger.info("Relayed %s credentials to opener.", provider)
        return outcome

    def _fail(self, provider: ProviderType, reason: str, state: str | None) -> RelayOutcome:
        logger.warning("%s relay failed: %s", provider, reason)
        outcome = RelayOutcome(
            provider=provider,
            success=False,
            message=error_message(provider, reason, state),
            error=reason,
        )
        self._post(outcome)
        return outcome

    def _post(self, outcome: RelayOutcome) -> None:
        if self._opener is None:
            logger.debug("No opener to notify for %s.", outcome.provider)
            return
        self._opener.post_message(
            outcome.message,
            target_origin=self._app_origin,
            source_origin=self._app_origin,
        )


def render_relay_page(outcome: RelayOutcome, app_origin: str) -> str:
    """Summary: Render the popup HTML that forwards the outcome to window.opener.

    Importance: Pins the target origin so only the application can read the credentials.
    Alternatives: Post with a wildcard origin.
    """

    message = _script_json(outcome.message)
    origin = _script_json(app_origin.rstrip("/"))
    if outcome.success:
        heading = '<h2 class="success">Authentication Successful!</h2>'
        body = "<p>You can close this window now.</p><div>Completing connection...</div>"
        delay = SUCCESS_CLOSE_DELAY_MS
    else:
        heading = '<h2 class="error">Authentication Failed</h2>'
        body = f"<p>{html.escape(outcome.error or '')}</p>"
        delay = FAILURE_CLOSE_DELAY_MS
    return f"""<!DOCTYPE html>
<html>
  <head>
    <title>{html.escape(outcome.title)}</title>
    <style>
      body {{ font-family: sans-serif; text-align: center; padding: 40px; }}
      .success {{ color: #4CAF50; }}
      .error {{ color: #F44336; }}
    </style>
  </head>
  <body>
    {heading}
    {body}
    <script>
      if (window.opener) {{
        window.opener.postMessage({message}, {origin});
      }}
      setTimeout(function () {{ window.close(); }}, {delay});
    </script>
  </body>
</html>
"""


def _script_json(value: Any) -> str:
    return json.dumps(value).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
