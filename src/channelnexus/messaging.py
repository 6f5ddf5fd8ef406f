"""Summary: Cross-window messaging primitives for the OAuth popup handshake.

Importance: Models the opener's message events and popup handles so the coordinator is testable.
Alternatives: Drive a real browser with an automation framework.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import webbrowser
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from channelnexus.models import ProviderType


logger = logging.getLogger(__name__)

WILDCARD_ORIGIN = "*"


def callback_type(provider: ProviderType) -> str:
    return f"{provider.value.upper()}_OAUTH_CALLBACK"


def error_type(provider: ProviderType) -> str:
    return f"{provider.value.upper()}_OAUTH_ERROR"


def success_message(
    provider: ProviderType, fields: dict[str, Any], state: str | None = None
) -> dict[str, Any]:
    """Summary: Build the success message posted from the relay page.

    Importance: Keeps the type tag and credential fields in one agreed shape.
    Alternatives: Let each provider define its own message layout.
    """

    return _with_state({"type": callback_type(provider), **fields}, state)


def error_message(provider: ProviderType, error: str, state: str | None = None) -> dict[str, Any]:
    return _with_state({"type": error_type(provider), "error": error}, state)


def _with_state(message: dict[str, Any], state: str | None) -> dict[str, Any]:
    # The state echoes the nonce of the attempt that opened the popup.
    if state:
        message["state"] = state
    return message


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    origin: str


MessageListener = Callable[[MessageEvent], None]


class MessageBus:
    """Summary: The opener window's `message` event target.

    Importance: Delivers relay results to whichever coordinator is listening.
    Alternatives: Poll the server for attempt results.
    """

    def __init__(self, origin: str) -> None:
        self.origin = origin.rstrip("/")
        self._listeners: list[MessageListener] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: Any, target_origin: str, source_origin: str) -> bool:
        """Summary: Dispatch a message to every registered listener.

        Importance: Drops messages addressed to another origin, like a browser does.
        Alternatives: Deliver every message and leave filtering to listeners.
        """

        if target_origin != WILDCARD_ORIGIN and target_origin.rstrip("/") != self.origin:
            logger.debug("Dropped message for origin %s.", target_origin)
            return False
        event = MessageEvent(data=copy.deepcopy(data), origin=source_origin.rstrip("/"))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Message listener failed.")
        return True


class PopupWindow(ABC):
    """Summary: Handle to a window opened for provider authorization.

    Importance: Lets the coordinator close the popup on every exit path exactly once.
    Alternatives: Leave popup lifetime to the user.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> bool:
        """Summary: Close the window if it is still open.

        Importance: Double-close is a no-op so concurrent exit paths cannot clash.
        Alternatives: Track closing state in the coordinator.
        """

        if self._closed:
            return False
        self._closed = True
        self._on_close()
        return True

    @abstractmethod
    def _on_close(self) -> None:
        """Summary: Release the underlying window."""

    def mark_closed_by_user(self) -> None:
        self._closed = True


class WindowHost(ABC):
    @abstractmethod
    def open(self, url: str) -> PopupWindow | None:
        """Summary: Open a window at a URL, or return None when blocked."""


class RemoteWindow(PopupWindow):
    """Summary: A window the process cannot close itself.

    Importance: Browser tabs opened via the OS close through the relay page's own script.
    Alternatives: Track tabs through a browser automation protocol.
    """

    def _on_close(self) -> None:
        logger.debug("Released popup for %s.", self.url)


class BrowserWindowHost(WindowHost):
    def open(self, url: str) -> PopupWindow | None:
        if not webbrowser.open_new(url):
            return None
        return RemoteWindow(url)


class DeferredWindowHost(WindowHost):
    """Summary: Hands the authorization URL to an HTTP client instead of opening it.

    Importance: Lets a server-driven attempt return the URL for the browser to open.
    Alternatives: Require the coordinator to run in the browser.
    """

    def __init__(self) -> None:
        self.window: RemoteWindow | None = None
        self.opened = asyncio.Event()

    def open(self, url: str) -> PopupWindow | None:
        self.window = RemoteWindow(url)
        self.opened.set()
        return self.window
