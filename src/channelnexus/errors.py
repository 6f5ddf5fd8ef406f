"""Summary: Error taxonomy for Channel Nexus.

Importance: Lets the connect flow, the exchange service, and the API distinguish failure kinds.
Alternatives: Raise ValueError/RuntimeError everywhere and match on messages.
"""

from __future__ import annotations


class ChannelNexusError(Exception):
    """Summary: Base error for the application.

    Importance: Gives callers one type to catch at service boundaries.
    Alternatives: Use builtin exceptions only.
    """

    title = "Something went wrong"
    retryable = False


class NotFoundError(ChannelNexusError):
    title = "Not found"


class InvalidTransitionError(ChannelNexusError):
    title = "Invalid status change"


class ConnectError(ChannelNexusError):
    """Summary: Base error for a channel connection attempt.

    Importance: The coordinator converts these into user-facing notices.
    Alternatives: Surface raw exceptions to the UI.
    """

    title = "Connection Failed"


class OAuthConfigurationError(ConnectError):
    title = "Configuration error"


class ProviderDeclinedError(ConnectError):
    title = "Authorization declined"


class ProviderRejectedError(ConnectError):
    title = "Authorization rejected"


class TransientNetworkError(ConnectError):
    title = "Network error"
    retryable = True


class MissingTokenError(ConnectError):
    title = "Connection Error"

    def __init__(self, provider: str) -> None:
        super().__init__(f"No access token received from {provider}")


class PopupBlockedError(ConnectError):
    title = "Popup blocked"

    def __init__(self) -> None:
        super().__init__(
            "Could not open authentication window. Please check your popup blocker settings."
        )


class ConnectTimeoutError(ConnectError):
    title = "Connection Timeout"
    retryable = True

    def __init__(self, provider: str, seconds: float) -> None:
        super().__init__(
            f"The connection to {provider} timed out after {seconds:g} seconds. "
            "If you closed the authorization window, please try again."
        )


class ConnectInProgressError(ConnectError):
    title = "Already connecting"

    def __init__(self, provider: str) -> None:
        super().__init__(f"A {provider} connection is already in progress")
