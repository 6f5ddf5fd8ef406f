"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from channelnexus.config import AppConfig
from channelnexus.coordinator import AuthorizationSource
from channelnexus.exchange_client import HttpExchangeClient
from channelnexus.messaging import MessageBus
from channelnexus.models import User
from channelnexus.notices import NoticeFeed
from channelnexus.oauth import CredentialExchangeService
from channelnexus.services import (
    ApiKeyService,
    ChannelRegistry,
    IngestionService,
    MessageObserver,
    MessageService,
    NotificationSettingsService,
    ProfileService,
    StatsService,
    TicketService,
)
from channelnexus.storage.sqlite_store import SqliteStore
from channelnexus.token_codec import CredentialCodec


@dataclass(frozen=True)
class Session:
    """Summary: The user a request or command acts for.

    Importance: Passed explicitly so no service reads an ambient current user.
    Alternatives: Store the current user in a global.
    """

    user_id: int
    display_name: str


@dataclass(frozen=True)
class AppContext:
    """Summary: Shared application context for building session services.

    Importance: Reuses storage, the exchange service, and the opener bus across sessions.
    Alternatives: Rebuild dependencies for every request.
    """

    store: SqliteStore
    config: AppConfig
    codec: CredentialCodec
    exchange: CredentialExchangeService
    bus: MessageBus
    notices: NoticeFeed = field(default_factory=NoticeFeed)
    message_observers: dict[int, list[MessageObserver]] = field(default_factory=dict)

    def default_session(self) -> Session:
        user = User(
            display_name=self.config.default_user_name,
            email=self.config.default_user_email,
        )
        user_id = self.store.ensure_user(user)
        stored = self.store.get_user(user_id)
        return Session(user_id=user_id, display_name=stored.display_name if stored else user.display_name)

    def session_for_user(self, user_id: int) -> Session | None:
        user = self.store.get_user(user_id)
        if not user:
            return None
        return Session(user_id=user.id, display_name=user.display_name)

    def authorizer(self) -> AuthorizationSource:
        """Summary: Pick how coordinators reach the exchange service.

        Importance: A remote exchange deployment is called over HTTP; a local one in-process.
        Alternatives: Always call the exchange service over HTTP.
        """

        base_url = self.config.exchange_base_url.rstrip("/")
        if base_url and base_url != self.config.app_origin.rstrip("/"):
            return HttpExchangeClient(base_url, api_key=self.config.api_key or None)
        return self.exchange

    def services_for_session(self, session: Session) -> "AppServices":
        """Summary: Build session-scoped services from shared context.

        Importance: Enables per-user API keys and data boundaries.
        Alternatives: Use a multi-tenant database with row-level security.
        """

        channels = ChannelRegistry(store=self.store, user_id=session.user_id, codec=self.codec)
        return AppServices(
            session=session,
            channels=channels,
            messages=MessageService(
                store=self.store,
                user_id=session.user_id,
                sender_name=session.display_name,
                observers=self.message_observers.setdefault(session.user_id, []),
            ),
            ingestion=IngestionService(store=self.store, user_id=session.user_id, channels=channels),
            settings=NotificationSettingsService(store=self.store, user_id=session.user_id),
            profile=ProfileService(store=self.store, user_id=session.user_id),
            tickets=TicketService(store=self.store, user_id=session.user_id),
            stats=StatsService(store=self.store, user_id=session.user_id),
            api_keys=ApiKeyService(store=self.store, token_secret=self.config.token_secret),
        )


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of session services for Channel Nexus.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    session: Session
    channels: ChannelRegistry
    messages: MessageService
    ingestion: IngestionService
    settings: NotificationSettingsService
    profile: ProfileService
    tickets: TicketService
    stats: StatsService
    api_keys: ApiKeyService


def build_context(config: AppConfig) -> AppContext:
    """Summary: Build shared context for session-scoped services.

    Importance: Reuses storage and the opener bus across sessions.
    Alternatives: Construct dependencies separately per request.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    return AppContext(
        store=store,
        config=config,
        codec=CredentialCodec(config.token_secret),
        exchange=CredentialExchangeService(config),
        bus=MessageBus(config.app_origin),
    )


def build_services(config: AppConfig) -> AppServices:
    """Summary: Build services for the default local user.

    Importance: Provides a single construction path for the CLI.
    Alternatives: Instantiate services directly within the CLI entrypoint.
    """

    context = build_context(config)
    return context.services_for_session(context.default_session())
