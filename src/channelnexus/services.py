"""Summary: Core application services for Channel Nexus.

Importance: Orchestrates channel registry, message lifecycle, settings, and ticket flows.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from channelnexus.errors import InvalidTransitionError, NotFoundError
from channelnexus.models import (
    ChannelConnection,
    ChannelCredentials,
    Message,
    MessageStatus,
    NotificationSettings,
    ProviderType,
    Ticket,
    TicketStatus,
)
from channelnexus.storage.sqlite_store import SqliteStore, StoredApiKey, StoredChannel, StoredUser
from channelnexus.threads import MessageFilter, ThreadView, filter_messages, group_threads
from channelnexus.token_codec import CredentialCodec


logger = logging.getLogger(__name__)

MessageObserver = Callable[[list[Message]], None]


@dataclass(frozen=True)
class ApiKeyService:
    """Summary: Issues and verifies API keys for users.

    Importance: API keys are how a request becomes an explicit session.
    Alternatives: Use OAuth or an external auth service.
    """

    store: SqliteStore
    token_secret: str

    def create_api_key(self, user_id: int, label: str | None = None) -> tuple[int, str]:
        """Summary: Create a new API key for a user.

        Importance: Returns a one-time plaintext token for client storage.
        Alternatives: Store raw tokens in the database.
        """

        raw_token = secrets.token_urlsafe(32)
        key_id = self.store.create_api_key(
            user_id=user_id,
            token_hash=self._hash_token(raw_token),
            label=label,
            created_at=datetime.utcnow().isoformat(),
        )
        logger.info("Created API key %s for user %s.", key_id, user_id)
        return key_id, raw_token

    def revoke_api_key(self, user_id: int, key_id: int) -> bool:
        return self.store.delete_api_key(user_id, key_id)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        return self.store.list_api_keys(user_id)

    def resolve_user_id(self, token: str) -> int | None:
        return self.store.get_user_id_by_api_key(self._hash_token(token))

    def _hash_token(self, token: str) -> str:
        salt = self.token_secret or "channelnexus"
        return hashlib.sha256(f"{salt}:{token}".encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ProfileService:
    store: SqliteStore
    user_id: int

    def get_profile(self) -> StoredUser:
        user = self.store.get_user(self.user_id)
        if not user:
            raise NotFoundError(f"User {self.user_id} not found")
        return user

    def update_profile(self, display_name: str | None = None, avatar: str | None = None) -> StoredUser:
        """Summary: Update the display name and/or avatar.

        Importance: The display name is also the sender name on replies.
        Alternatives: Manage profiles in an external identity provider.
        """

        if display_name is not None and not display_name.strip():
            raise ValueError("Display name cannot be empty")
        if not self.store.update_user(self.user_id, display_name, avatar):
            raise NotFoundError(f"User {self.user_id} not found")
        logger.info("Updated profile for user %s.", self.user_id)
        return self.get_profile()


@dataclass(frozen=True)
class ChannelRegistry:
    """Summary: Holds the connected channels for the current user.

    Importance: Target of successful OAuth connects and the source of channel listings.
    Alternatives: Store connections only in environment configuration.
    """

    store: SqliteStore
    user_id: int
    codec: CredentialCodec

    def create(
        self, provider_type: ProviderType, display_name: str, credentials: ChannelCredentials
    ) -> ChannelConnection:
        """Summary: Create a connected channel from OAuth credentials.

        Importance: A connected OAuth channel always carries a non-empty access token.
        Alternatives: Create the row first and attach credentials later.
        """

        if credentials.provider != provider_type:
            raise ValueError(
                f"Credentials for {credentials.provider} cannot connect a {provider_type} channel"
            )
        if not credentials.access_token:
            raise ValueError("A connected channel requires an access token")
        channel = ChannelConnection(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            provider_type=provider_type,
            display_name=display_name,
            is_connected=True,
            created_at=datetime.utcnow(),
            credentials=credentials,
        )
        self.store.add_channel(channel, self.codec.encode(credentials))
        logger.info("Connected channel %s (%s).", display_name, provider_type)
        return channel

    def add_manual(self, provider_type: ProviderType, display_name: str) -> ChannelConnection:
        """Summary: Create a simulated connection named by the user.

        Importance: Lets non-OAuth providers appear in the inbox without credentials.
        Alternatives: Refuse channels without an OAuth integration.
        """

        if provider_type.supports_oauth:
            raise ValueError(f"{provider_type} channels must be connected through OAuth")
        if not display_name.strip():
            raise ValueError("Please enter a name for this connection")
        now = datetime.utcnow()
        channel = ChannelConnection(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            provider_type=provider_type,
            display_name=display_name.strip(),
            is_connected=True,
            created_at=now,
            last_sync=now,
        )
        self.store.add_channel(channel, None)
        logger.info("Added channel %s (%s).", channel.display_name, provider_type)
        return channel

    def list(self) -> list[ChannelConnection]:
        return [self._from_stored(item) for item in self.store.list_channels(self.user_id)]

    def get(self, channel_id: str) -> ChannelConnection:
        stored = self.store.get_channel(self.user_id, channel_id)
        if not stored:
            raise NotFoundError(f"Channel {channel_id} not found")
        return self._from_stored(stored)

    def exists(self, channel_id: str) -> bool:
        return self.store.get_channel(self.user_id, channel_id) is not None

    def delete(self, channel_id: str) -> None:
        """Summary: Disconnect a channel by deleting its row.

        Importance: Credentials leave storage together with the channel.
        Alternatives: Soft-disable the row and keep credentials.
        """

        if not self.store.delete_channel(self.user_id, channel_id):
            raise NotFoundError(f"Channel {channel_id} not found")
        logger.info("Disconnected channel %s.", channel_id)

    def mark_synced(self, channel_id: str) -> None:
        if not self.store.update_channel_sync(self.user_id, channel_id, datetime.utcnow()):
            raise NotFoundError(f"Channel {channel_id} not found")

    def _from_stored(self, stored: StoredChannel) -> ChannelConnection:
        credentials = None
        if stored.credentials:
            credentials = self.codec.decode(stored.provider_type, stored.credentials)
        return ChannelConnection(
            id=stored.id,
            user_id=stored.user_id,
            provider_type=stored.provider_type,
            display_name=stored.display_name,
            is_connected=stored.is_connected,
            created_at=datetime.fromisoformat(stored.created_at),
            credentials=credentials,
            last_sync=datetime.fromisoformat(stored.last_sync) if stored.last_sync else None,
        )


@dataclass(frozen=True)
class MessageService:
    """Summary: Message store operations and status lifecycle.

    Importance: Every mutation is written to storage before observers hear about it.
    Alternatives: Mutate a client-side copy optimistically and reconcile later.
    """

    store: SqliteStore
    user_id: int
    sender_name: str
    observers: list[MessageObserver] = field(default_factory=list)

    def subscribe(self, observer: MessageObserver) -> None:
        self.observers.append(observer)

    def list(self, message_filter: MessageFilter | None = None) -> list[Message]:
        messages = self.store.list_messages(self.user_id)
        return filter_messages(messages, message_filter or MessageFilter())

    def threads(self, message_filter: MessageFilter | None = None) -> ThreadView:
        return group_threads(self.list(message_filter))

    def get(self, message_id: str) -> Message:
        message = self.store.get_message(self.user_id, message_id)
        if not message:
            raise NotFoundError(f"Message {message_id} not found")
        return message

    def unread_count(self) -> int:
        return self.store.count_messages(self.user_id, MessageStatus.UNREAD)

    def mark_read(self, message_id: str) -> Message:
        """Summary: Mark an unread message as read.

        Importance: Never demotes replied or archived messages back to read.
        Alternatives: Set read unconditionally on open.
        """

        message = self.get(message_id)
        if message.status != MessageStatus.UNREAD:
            return message
        self.store.update_message_status(self.user_id, message_id, MessageStatus.READ)
        updated = replace(message, status=MessageStatus.READ)
        self._publish([updated])
        return updated

    def reply(self, message_id: str, content: str) -> Message:
        """Summary: Reply to a message within its thread.

        Importance: Threads stay flat; every reply joins the root's thread.
        Alternatives: Nest threads under the immediate parent.
        """

        if not content.strip():
            raise ValueError("Reply content cannot be empty")
        parent = self.get(message_id)
        reply = Message(
            id=uuid.uuid4().hex,
            channel_id=parent.channel_id,
            sender_id=str(self.user_id),
            sender_name=self.sender_name,
            content=content,
            created_at=datetime.utcnow(),
            status=MessageStatus.READ,
            thread_id=parent.thread_id or parent.id,
            parent_id=parent.id,
        )
        parent_status = parent.status
        if parent_status.can_become(MessageStatus.REPLIED):
            parent_status = MessageStatus.REPLIED
        try:
            self.store.record_reply(self.user_id, parent.id, parent_status, reply)
        except LookupError as exc:
            raise NotFoundError(str(exc)) from exc
        logger.info("Replied to message %s.", message_id)
        self._publish([replace(parent, status=parent_status), reply])
        return reply

    def star(self, message_id: str, starred: bool) -> Message:
        message = self.get(message_id)
        if message.is_starred == starred:
            return message
        self.store.set_message_starred(self.user_id, message_id, starred)
        updated = replace(message, is_starred=starred)
        self._publish([updated])
        return updated

    def archive(self, message_id: str) -> Message:
        """Summary: Move a message to the archive.

        Importance: Archived is terminal; archiving twice is a no-op.
        Alternatives: Delete archived messages.
        """

        message = self.get(message_id)
        if message.status == MessageStatus.ARCHIVED:
            return message
        if not message.status.can_become(MessageStatus.ARCHIVED):
            raise InvalidTransitionError(f"Cannot archive a {message.status} message")
        self.store.update_message_status(self.user_id, message_id, MessageStatus.ARCHIVED)
        logger.info("Archived message %s.", message_id)
        updated = replace(message, status=MessageStatus.ARCHIVED)
        self._publish([updated])
        return updated

    def _publish(self, messages: list[Message]) -> None:
        for observer in list(self.observers):
            observer(messages)


@dataclass(frozen=True)
class IngestionService:
    """Summary: Handles ingestion of messages synced from providers.

    Importance: Validates channel references and thread shape before persisting.
    Alternatives: Ingest directly inside CLI commands.
    """

    store: SqliteStore
    user_id: int
    channels: ChannelRegistry

    def ingest_messages(self, messages: list[Message]) -> list[str]:
        known = {channel.id for channel in self.channels.list()}
        for message in messages:
            if message.channel_id not in known:
                raise NotFoundError(
                    f"Message {message.id} references unknown channel {message.channel_id}"
                )
        ids = self.store.save_messages(messages, user_id=self.user_id)
        for channel_id in {message.channel_id for message in messages}:
            self.channels.mark_synced(channel_id)
        logger.info("Ingested %s messages.", len(ids))
        return ids


@dataclass(frozen=True)
class NotificationSettingsService:
    store: SqliteStore
    user_id: int

    def get(self) -> NotificationSettings:
        """Summary: Return settings, creating defaults on first access.

        Importance: Every user has settings without a signup hook.
        Alternatives: Create settings rows when users are created.
        """

        settings = self.store.get_notification_settings(self.user_id)
        if settings is None:
            settings = NotificationSettings(user_id=self.user_id)
            self.store.save_notification_settings(settings)
        return settings

    def update(
        self,
        enable_push: bool | None = None,
        enable_email: bool | None = None,
        enable_sound: bool | None = None,
    ) -> NotificationSettings:
        current = self.get()
        updated = replace(
            current,
            enable_push=current.enable_push if enable_push is None else enable_push,
            enable_email=current.enable_email if enable_email is None else enable_email,
            enable_sound=current.enable_sound if enable_sound is None else enable_sound,
        )
        self.store.save_notification_settings(updated)
        logger.info("Updated notification settings for user %s.", self.user_id)
        return updated

    def toggle_mute(self, channel_id: str) -> NotificationSettings:
        current = self.get()
        muted = set(current.muted_channels)
        if channel_id in muted:
            muted.discard(channel_id)
        else:
            if self.store.get_channel(self.user_id, channel_id) is None:
                raise NotFoundError(f"Channel {channel_id} not found")
            muted.add(channel_id)
        updated = replace(current, muted_channels=frozenset(muted))
        self.store.save_notification_settings(updated)
        return updated

    def is_muted(self, channel_id: str) -> bool:
        """Summary: Check whether notifications for a channel are muted.

        Importance: Stale muted IDs for deleted channels are ignored.
        Alternatives: Purge muted IDs whenever a channel is deleted.
        """

        if channel_id not in self.get().muted_channels:
            return False
        return self.store.get_channel(self.user_id, channel_id) is not None


@dataclass(frozen=True)
class TicketService:
    store: SqliteStore
    user_id: int

    def create_ticket(self, subject: str, description: str, priority: str = "medium") -> Ticket:
        if not subject.strip():
            raise ValueError("Ticket subject cannot be empty")
        if priority not in {"low", "medium", "high"}:
            raise ValueError(f"Unknown ticket priority: {priority}")
        ticket_id = self.store.create_ticket(
            self.user_id, subject.strip(), description, priority, datetime.utcnow()
        )
        logger.info("Created ticket %s.", ticket_id)
        return self.get_ticket(ticket_id)

    def list_tickets(self) -> list[Ticket]:
        return self.store.list_tickets(self.user_id)

    def get_ticket(self, ticket_id: int) -> Ticket:
        ticket = self.store.get_ticket(self.user_id, ticket_id)
        if not ticket:
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def update_status(self, ticket_id: int, status: TicketStatus) -> Ticket:
        if not self.store.update_ticket_status(self.user_id, ticket_id, status, datetime.utcnow()):
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return self.get_ticket(ticket_id)

    def delete_ticket(self, ticket_id: int) -> None:
        if not self.store.delete_ticket(self.user_id, ticket_id):
            raise NotFoundError(f"Ticket {ticket_id} not found")


@dataclass(frozen=True)
class StatsService:
    """Summary: Provides lightweight counts for the dashboard.

    Importance: Enables quick health checks of the inbox.
    Alternatives: Calculate counts directly in the API or UI.
    """

    store: SqliteStore
    user_id: int

    def snapshot(self) -> dict[str, int]:
        return {
            "channels": self.store.count_channels(self.user_id),
            "messages": self.store.count_messages(self.user_id),
            "unread": self.store.count_messages(self.user_id, MessageStatus.UNREAD),
            "archived": self.store.count_messages(self.user_id, MessageStatus.ARCHIVED),
            "open_tickets": self.store.count_tickets(self.user_id),
        }
