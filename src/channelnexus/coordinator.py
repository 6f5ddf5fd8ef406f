"""Summary: OAuth connect coordinator for popup-based channel authorization.

Importance: Drives one connection attempt per call to a bounded, leak-free conclusion.
Alternatives: Let the UI wire popups and message listeners by hand for each provider.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Protocol

from channelnexus.errors import (
    ConnectError,
    ConnectInProgressError,
    ConnectTimeoutError,
    MissingTokenError,
    PopupBlockedError,
    ProviderDeclinedError,
)
from channelnexus.messaging import MessageBus, MessageEvent, PopupWindow, WindowHost, callback_type, error_type
from channelnexus.models import ChannelConnection, ChannelCredentials, ProviderType, credentials_for
from channelnexus.notices import NoticeFeed


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0

# Field names older relay pages used before identity_name/identity_id.
_LEGACY_IDENTITY_KEYS = {
    ProviderType.SLACK: ("team_name", "team_id"),
    ProviderType.DISCORD: ("user_name", "user_id"),
}


class AuthorizationSource(Protocol):
    def authorization_url(self, provider: ProviderType, state: str | None = None) -> str: ...


class ChannelSink(Protocol):
    def create(
        self, provider_type: ProviderType, display_name: str, credentials: ChannelCredentials
    ) -> ChannelConnection: ...


class AttemptState(StrEnum):
    IDLE = "idle"
    AWAITING_POPUP = "awaiting_popup"
    AWAITING_CALLBACK = "awaiting_callback"
    CONNECTED = "connected"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class ConnectAttempt:
    """Summary: Record of a single connect() call.

    Importance: Carries the final state, created channel, or failure to callers and the API.
    Alternatives: Return a bare boolean and rely on notices.
    """

    provider: ProviderType
    state: AttemptState = AttemptState.IDLE
    nonce: str = field(default_factory=lambda: secrets.token_urlsafe(16))
    authorization_url: str | None = None
    popup: PopupWindow | None = None
    channel: ChannelConnection | None = None
    error: ConnectError | None = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: datetime | None = None

    @property
    def finished(self) -> bool:
        return self.state in {AttemptState.CONNECTED, AttemptState.FAILED, AttemptState.TIMED_OUT}


class OAuthConnectCoordinator:
    """Summary: Per-provider controller for the popup authorization handshake.

    Importance: Guarantees one listener per attempt, removed on every exit path, and a hard timeout.
    Alternatives: Poll the server until credentials appear.
    """

    def __init__(
        self,
        provider: ProviderType,
        authorizer: AuthorizationSource,
        window_host: WindowHost,
        bus: MessageBus,
        registry: ChannelSink,
        notices: NoticeFeed,
        trusted_origin: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not provider.supports_oauth:
            raise ValueError(f"Provider {provider} does not support OAuth")
        self.provider = provider
        self._authorizer = authorizer
        self._window_host = window_host
        self._bus = bus
        self._registry = registry
        self._notices = notices
        self._trusted_origin = trusted_origin.rstrip("/")
        self._timeout = timeout
        self._connecting = False
        self.last_attempt: ConnectAttempt | None = None

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    async def connect(self) -> ConnectAttempt:
        """Summary: Run one connection attempt to completion.

        Importance: Never raises for OAuth failures; they end up on the attempt and in a notice.
        Alternatives: Propagate exceptions and let every caller build its own messaging.
        """

        attempt = ConnectAttempt(provider=self.provider)
        if self._connecting:
            self._fail(attempt, ConnectInProgressError(self.provider.value))
            return attempt
        self.last_attempt = attempt
        self._connecting = True
        try:
            channel = await self._run(attempt)
        except ConnectTimeoutError as exc:
            self._fail(attempt, exc, AttemptState.TIMED_OUT)
        except ConnectError as exc:
            self._fail(attempt, exc)
        except Exception as exc:
            logger.exception("Unexpected failure connecting %s.", self.provider)
            self._fail(attempt, ConnectError(str(exc) or f"Could not connect to {self.provider}"))
        else:
            attempt.channel = channel
            attempt.state = AttemptState.CONNECTED
            attempt.finished_at = datetime.utcnow()
            self._notices.success("Success!", f"Connected to {channel.display_name}")
        finally:
            self._connecting = False
        return attempt

    async def _run(self, attempt: ConnectAttempt) -> ChannelConnection:
        attempt.state = AttemptState.AWAITING_POPUP
        url = await asyncio.to_thread(self._authorizer.authorization_url, self.provider, attempt.nonce)
        attempt.authorization_url = url
        popup = self._window_host.open(url)
        if popup is None:
            raise PopupBlockedError()
        attempt.popup = popup
        attempt.state = AttemptState.AWAITING_CALLBACK

        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[dict[str, Any]] = loop.create_future()
        # Messages may arrive from a worker thread; the lock orders them against teardown.
        lock = threading.Lock()
        settled = False

        def settle(data: dict[str, Any]) -> None:
            if not outcome.done():
                outcome.set_result(data)

        def on_message(event: MessageEvent) -> None:
            nonlocal settled
            if event.origin != self._trusted_origin:
                logger.warning("Ignored %s message from untrusted origin %s.", self.provider, event.origin)
                return
            data = event.data
            if not isinstance(data, dict):
                return
            if data.get("type") not in {callback_type(self.provider), error_type(self.provider)}:
                return
            if data.get("state") != attempt.nonce:
                logger.debug("Ignored %s message for another attempt.", self.provider)
                return
            with lock:
                if settled:
                    return
                settled = True
            loop.call_soon_threadsafe(settle, data)

        self._bus.add_listener(on_message)
        try:
            data = await asyncio.wait_for(outcome, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectTimeoutError(self.provider.value, self._timeout) from exc
        finally:
            with lock:
                settled = True
            self._bus.remove_listener(on_message)
            popup.close()

        if data.get("type") == error_type(self.provider):
            reason = data.get("error") or f"Authentication with {self.provider} failed."
            raise ProviderDeclinedError(str(reason))
        return self._complete(data)

    def _complete(self, data: dict[str, Any]) -> ChannelConnection:
        access_token = data.get("access_token")
        if not access_token:
            raise MissingTokenError(self.provider.value)
        name_key, id_key = _LEGACY_IDENTITY_KEYS[self.provider]
        credentials = credentials_for(
            self.provider,
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            identity_name=data.get("identity_name") or data.get(name_key) or None,
            identity_id=data.get("identity_id") or data.get(id_key) or None,
        )
        display_name = credentials.identity_name or credentials.default_name
        return self._registry.create(self.provider, display_name, credentials)

    def _fail(
        self,
        attempt: ConnectAttempt,
        error: ConnectError,
        state: AttemptState = AttemptState.FAILED,
    ) -> None:
        attempt.error = error
        attempt.state = state
        attempt.finished_at = datetime.utcnow()
        self._notices.failure(error.title, str(error))
