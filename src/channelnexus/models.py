"""Summary: Domain model dataclasses for Channel Nexus.

Importance: Defines the core entities shared across services, storage, and the OAuth flow.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, ClassVar, Union


class ProviderType(StrEnum):
    """Summary: Closed set of communication platforms a channel can belong to.

    Importance: Keeps provider routing and credential shapes fixed per deployment.
    Alternatives: Accept free-form provider strings.
    """

    SLACK = "slack"
    DISCORD = "discord"
    TEAMS = "teams"
    GMAIL = "gmail"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"

    @property
    def supports_oauth(self) -> bool:
        return self in OAUTH_PROVIDERS


OAUTH_PROVIDERS = frozenset({ProviderType.SLACK, ProviderType.DISCORD})


class MessageStatus(StrEnum):
    """Summary: Lifecycle states of a message.

    Importance: Drives inbox views and the reply/archive workflow.
    Alternatives: Track read/replied/archived as independent booleans.
    """

    UNREAD = "unread"
    READ = "read"
    REPLIED = "replied"
    ARCHIVED = "archived"

    def can_become(self, target: "MessageStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[MessageStatus, frozenset[MessageStatus]] = {
    MessageStatus.UNREAD: frozenset(
        {MessageStatus.READ, MessageStatus.REPLIED, MessageStatus.ARCHIVED}
    ),
    MessageStatus.READ: frozenset({MessageStatus.REPLIED, MessageStatus.ARCHIVED}),
    MessageStatus.REPLIED: frozenset({MessageStatus.ARCHIVED}),
    MessageStatus.ARCHIVED: frozenset(),
}


class TicketStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


@dataclass(frozen=True)
class User:
    """Summary: Represents an account owner.

    Importance: Anchors data ownership for channels, messages, and settings.
    Alternatives: Keep a single implicit user without records.
    """

    display_name: str
    email: str
    avatar: str | None = None


@dataclass(frozen=True)
class SlackCredentials:
    """Summary: Credentials returned by a Slack workspace installation.

    Importance: Gives Slack channels a typed credential shape instead of an open map.
    Alternatives: Store the raw token response.
    """

    provider: ClassVar[ProviderType] = ProviderType.SLACK
    default_name: ClassVar[str] = "Slack Workspace"

    access_token: str
    refresh_token: str | None = None
    team_name: str | None = None
    team_id: str | None = None

    @property
    def identity_name(self) -> str | None:
        return self.team_name

    @property
    def identity_id(self) -> str | None:
        return self.team_id


@dataclass(frozen=True)
class DiscordCredentials:
    """Summary: Credentials returned by a Discord user authorization.

    Importance: Gives Discord channels a typed credential shape instead of an open map.
    Alternatives: Store the raw token response.
    """

    provider: ClassVar[ProviderType] = ProviderType.DISCORD
    default_name: ClassVar[str] = "Discord Server"

    access_token: str
    refresh_token: str | None = None
    user_name: str | None = None
    user_id: str | None = None

    @property
    def identity_name(self) -> str | None:
        return self.user_name

    @property
    def identity_id(self) -> str | None:
        return self.user_id


ChannelCredentials = Union[SlackCredentials, DiscordCredentials]

_CREDENTIAL_TYPES: dict[ProviderType, type] = {
    ProviderType.SLACK: SlackCredentials,
    ProviderType.DISCORD: DiscordCredentials,
}


def credentials_for(
    provider: ProviderType,
    access_token: str,
    refresh_token: str | None = None,
    identity_name: str | None = None,
    identity_id: str | None = None,
) -> ChannelCredentials:
    """Summary: Build the provider-specific credential record from normalized fields.

    Importance: Maps the generic identity fields of the OAuth protocol onto each provider's shape.
    Alternatives: Let each caller construct provider dataclasses directly.
    """

    if provider == ProviderType.SLACK:
        return SlackCredentials(
            access_token=access_token,
            refresh_token=refresh_token,
            team_name=identity_name,
            team_id=identity_id,
        )
    if provider == ProviderType.DISCORD:
        return DiscordCredentials(
            access_token=access_token,
            refresh_token=refresh_token,
            user_name=identity_name,
            user_id=identity_id,
        )
    raise ValueError(f"Provider {provider} does not use OAuth credentials")


def credentials_to_dict(credentials: ChannelCredentials) -> dict[str, Any]:
    return asdict(credentials)


def credentials_from_dict(provider: ProviderType, data: dict[str, Any]) -> ChannelCredentials:
    credential_type = _CREDENTIAL_TYPES.get(provider)
    if credential_type is None:
        raise ValueError(f"Provider {provider} does not use OAuth credentials")
    return credential_type(**data)


@dataclass(frozen=True)
class ChannelConnection:
    """Summary: A connected third-party account surfaced as an inbox channel.

    Importance: Every message references a channel; OAuth connects create these records.
    Alternatives: Store connections only in environment configuration.
    """

    id: str
    user_id: int
    provider_type: ProviderType
    display_name: str
    is_connected: bool
    created_at: datetime
    credentials: ChannelCredentials | None = None
    last_sync: datetime | None = None


@dataclass(frozen=True)
class Attachment:
    id: str
    name: str
    mime_type: str
    url: str
    size: int


@dataclass(frozen=True)
class Message:
    """Summary: A message from any channel, optionally part of a thread.

    Importance: Core unit for the unified inbox, replies, and status views.
    Alternatives: Model only threads and store messages as embedded records.
    """

    id: str
    channel_id: str
    sender_name: str
    content: str
    created_at: datetime
    status: MessageStatus = MessageStatus.UNREAD
    is_starred: bool = False
    sender_id: str | None = None
    sender_avatar: str | None = None
    thread_id: str | None = None
    parent_id: str | None = None
    attachments: tuple[Attachment, ...] = ()

    def __post_init__(self) -> None:
        if self.parent_id and not self.thread_id:
            raise ValueError(f"Message {self.id} has a parent but no thread")

    @property
    def is_reply(self) -> bool:
        return bool(self.thread_id and self.parent_id)

    @property
    def is_root(self) -> bool:
        return not self.parent_id


@dataclass(frozen=True)
class NotificationSettings:
    """Summary: Per-user notification preferences.

    Importance: Lets users silence channels without disconnecting them.
    Alternatives: Store preferences client-side only.
    """

    user_id: int
    enable_push: bool = True
    enable_email: bool = True
    enable_sound: bool = True
    muted_channels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Ticket:
    """Summary: A support ticket raised by a user.

    Importance: Gives users a channel to the operators of the deployment.
    Alternatives: Route support through email only.
    """

    id: int
    user_id: int
    subject: str
    description: str
    priority: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
