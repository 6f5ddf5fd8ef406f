"""Summary: FastAPI application for Channel Nexus.

Importance: Exposes the channel registry, inbox, and OAuth handshake over HTTP.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from channelnexus.app import Session, build_context
from channelnexus.config import AppConfig
from channelnexus.coordinator import ConnectAttempt, OAuthConnectCoordinator
from channelnexus.errors import (
    ConnectError,
    InvalidTransitionError,
    NotFoundError,
    OAuthConfigurationError,
    TransientNetworkError,
)
from channelnexus.messaging import DeferredWindowHost
from channelnexus.models import (
    ChannelConnection,
    Message,
    NotificationSettings,
    ProviderType,
    Ticket,
    TicketStatus,
)
from channelnexus.oauth import parse_oauth_provider
from channelnexus.relay import CallbackRelay, render_relay_page
from channelnexus.sources import MockMessageSource
from channelnexus.threads import InboxView, MessageFilter


logger = logging.getLogger(__name__)

DEFAULT_FIXTURE = Path("data") / "mock_messages.json"


class ChannelCreateRequest(BaseModel):
    """Summary: Request payload for a manually added channel.

    Importance: Non-OAuth providers are connected by name only.
    Alternatives: Accept arbitrary provider metadata.
    """

    provider_type: ProviderType
    display_name: str


class ReplyRequest(BaseModel):
    content: str = Field(min_length=1)


class StarRequest(BaseModel):
    starred: bool = True


class IngestRequest(BaseModel):
    """Summary: Request payload for mock message ingestion.

    Importance: Keeps ingestion inputs explicit for API clients.
    Alternatives: Use query parameters instead of JSON payloads.
    """

    channel_id: str
    limit: int = Field(default=20, ge=1, le=200)
    fixture_path: str | None = None


class ProfileUpdateRequest(BaseModel):
    display_name: str | None = None
    avatar: str | None = None


class NotificationSettingsRequest(BaseModel):
    enable_push: bool | None = None
    enable_email: bool | None = None
    enable_sound: bool | None = None


class TicketCreateRequest(BaseModel):
    subject: str
    description: str = ""
    priority: str = "medium"


class TicketUpdateRequest(BaseModel):
    status: TicketStatus


class ApiKeyCreateRequest(BaseModel):
    label: str | None = None


def create_app(config: AppConfig) -> FastAPI:
    """Summary: Create a FastAPI app wired to Channel Nexus services.

    Importance: Ensures the API layer shares the same configuration, storage, and opener bus.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    context = build_context(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        pending = [task for task in app.state.connect_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Cancelled %s pending connect attempts.", len(pending))

    app = FastAPI(title="Channel Nexus API", version="0.1.0", lifespan=lifespan)
    app.state.context = context
    app.state.coordinators = {}
    app.state.connect_tasks = set()

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def validation_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def current_session(
        x_api_key: str | None = Header(default=None),
        authorization: str | None = Header(default=None),
    ) -> Session:
        """Summary: Resolve the session a request acts for.

        Importance: Per-user keys map to their owner; the deployment key and local mode use the default user.
        Alternatives: Use OAuth or session-based authentication.
        """

        token = x_api_key or _bearer_token(authorization)
        if not token:
            if config.api_key:
                raise HTTPException(status_code=401, detail="Invalid API key")
            return context.default_session()
        if config.api_key and token == config.api_key:
            return context.default_session()
        services = context.services_for_session(context.default_session())
        user_id = services.api_keys.resolve_user_id(token)
        session = context.session_for_user(user_id) if user_id is not None else None
        if session is None:
            raise HTTPException(status_code=401, detail="Invalid API key")
        return session

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.get("/profile")
    def get_profile(session: Session = Depends(current_session)) -> dict[str, Any]:
        user = context.services_for_session(session).profile.get_profile()
        return {"id": user.id, "display_name": user.display_name, "email": user.email, "avatar": user.avatar}

    @app.patch("/profile")
    def update_profile(
        payload: ProfileUpdateRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        profile = context.services_for_session(session).profile
        user = profile.update_profile(display_name=payload.display_name, avatar=payload.avatar)
        return {"id": user.id, "display_name": user.display_name, "email": user.email, "avatar": user.avatar}

    @app.get("/channels")
    def list_channels(session: Session = Depends(current_session)) -> list[dict[str, Any]]:
        channels = context.services_for_session(session).channels.list()
        return [_channel_payload(channel) for channel in channels]

    @app.post("/channels")
    def add_channel(
        payload: ChannelCreateRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        """Summary: Add a simulated connection for a provider without OAuth.

        Importance: Lets every provider type appear in the unified inbox.
        Alternatives: Reject providers without a live integration.
        """

        registry = context.services_for_session(session).channels
        channel = registry.add_manual(payload.provider_type, payload.display_name)
        context.notices.success("Channel connected", f"{channel.display_name} was added.")
        return _channel_payload(channel)

    @app.delete("/channels/{channel_id}")
    def disconnect_channel(channel_id: str, session: Session = Depends(current_session)) -> dict[str, Any]:
        context.services_for_session(session).channels.delete(channel_id)
        context.notices.success("Channel disconnected", "The channel was removed.")
        return {"id": channel_id, "deleted": True}

    @app.post("/channels/connect/{provider}")
    async def start_connect(provider: str, session: Session = Depends(current_session)) -> Any:
        """Summary: Start a server-driven OAuth connect attempt.

        Importance: Returns the authorization URL for the browser while the
        coordinator waits for the relay page on the in-process bus.
        Alternatives: Run the coordinator in the browser only.
        """

        provider_type = parse_oauth_provider(provider)
        key = (session.user_id, provider_type)
        existing: OAuthConnectCoordinator | None = app.state.coordinators.get(key)
        if existing is not None and existing.is_connecting:
            raise HTTPException(status_code=409, detail=f"A {provider_type} connection is already in progress")
        host = DeferredWindowHost()
        coordinator = OAuthConnectCoordinator(
            provider=provider_type,
            authorizer=context.authorizer(),
            window_host=host,
            bus=context.bus,
            registry=context.services_for_session(session).channels,
            notices=context.notices,
            trusted_origin=config.app_origin,
            timeout=config.oauth_timeout_seconds,
        )
        app.state.coordinators[key] = coordinator
        task = asyncio.create_task(coordinator.connect())
        app.state.connect_tasks.add(task)
        task.add_done_callback(app.state.connect_tasks.discard)
        opened = asyncio.create_task(host.opened.wait())
        await asyncio.wait({task, opened}, return_when=asyncio.FIRST_COMPLETED)
        if host.window is None:
            opened.cancel()
            attempt = await task
            return _attempt_error_response(attempt)
        return {
            "provider": provider_type.value,
            "url": host.window.url,
            "state": coordinator.last_attempt.state.value if coordinator.last_attempt else "idle",
            "timeout_seconds": config.oauth_timeout_seconds,
        }

    @app.get("/channels/connect/{provider}")
    def connect_status(provider: str, session: Session = Depends(current_session)) -> dict[str, Any]:
        provider_type = parse_oauth_provider(provider)
        coordinator: OAuthConnectCoordinator | None = app.state.coordinators.get(
            (session.user_id, provider_type)
        )
        attempt = coordinator.last_attempt if coordinator else None
        return {
            "provider": provider_type.value,
            "connecting": bool(coordinator and coordinator.is_connecting),
            "attempt": _attempt_payload(attempt) if attempt else None,
        }

    @app.get("/oauth/{provider}")
    def exchange(
        provider: str,
        code: str | None = None,
        state: str | None = None,
        session: Session = Depends(current_session),
    ) -> Any:
        """Summary: Credential exchange service endpoint.

        Importance: Without a code it returns the authorization URL; with one it
        performs exactly one token exchange.
        Alternatives: Separate endpoints for URL generation and exchange.
        """

        try:
            provider_type = parse_oauth_provider(provider)
            if code is None:
                return {"url": context.exchange.authorization_url(provider_type, state)}
            return context.exchange.exchange_payload(provider_type, code)
        except ValueError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})
        except ConnectError as exc:
            return _exchange_error_response(exc)

    @app.get("/oauth/{provider}/callback", response_class=HTMLResponse)
    def oauth_callback(provider: str, request: Request) -> str:
        """Summary: Callback relay page the provider redirects the popup to.

        Importance: Always posts an outcome to the opener so attempts never hang.
        Alternatives: Render a static page and poll for completion.
        """

        provider_type = parse_oauth_provider(provider)
        relay = CallbackRelay(context.exchange, context.bus, config.app_origin)
        outcome = relay.handle(provider_type, dict(request.query_params))
        return render_relay_page(outcome, config.app_origin)

    @app.get("/messages")
    def list_messages(
        view: InboxView = InboxView.ALL,
        channel_id: str | None = None,
        search: str | None = None,
        session: Session = Depends(current_session),
    ) -> list[dict[str, Any]]:
        message_filter = MessageFilter(view=view, channel_id=channel_id, search=search)
        messages = context.services_for_session(session).messages.list(message_filter)
        return [_message_payload(message) for message in messages]

    @app.get("/messages/threads")
    def list_threads(
        view: InboxView = InboxView.ALL,
        channel_id: str | None = None,
        search: str | None = None,
        session: Session = Depends(current_session),
    ) -> list[dict[str, Any]]:
        """Summary: Return roots newest-first with their replies oldest-first.

        Importance: Replies are grouped from the filtered set only.
        Alternatives: Group replies from the unfiltered pool.
        """

        message_filter = MessageFilter(view=view, channel_id=channel_id, search=search)
        thread_view = context.services_for_session(session).messages.threads(message_filter)
        return [
            {
                **_message_payload(root),
                "replies": [_message_payload(reply) for reply in thread_view.replies_for(root)],
            }
            for root in thread_view.roots
        ]

    @app.get("/messages/unread-count")
    def unread_count(session: Session = Depends(current_session)) -> dict[str, int]:
        return {"unread": context.services_for_session(session).messages.unread_count()}

    @app.post("/messages/{message_id}/read")
    def mark_read(message_id: str, session: Session = Depends(current_session)) -> dict[str, Any]:
        message = context.services_for_session(session).messages.mark_read(message_id)
        return _message_payload(message)

    @app.post("/messages/{message_id}/reply")
    def reply(
        message_id: str, payload: ReplyRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        message = context.services_for_session(session).messages.reply(message_id, payload.content)
        return _message_payload(message)

    @app.post("/messages/{message_id}/star")
    def star(
        message_id: str, payload: StarRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        message = context.services_for_session(session).messages.star(message_id, payload.starred)
        return _message_payload(message)

    @app.post("/messages/{message_id}/archive")
    def archive(message_id: str, session: Session = Depends(current_session)) -> dict[str, Any]:
        message = context.services_for_session(session).messages.archive(message_id)
        return _message_payload(message)

    @app.post("/ingest/mock")
    def ingest_mock(payload: IngestRequest, session: Session = Depends(current_session)) -> dict[str, Any]:
        """Summary: Ingest mock channel messages from a fixture.

        Importance: Enables deterministic demos and integration tests.
        Alternatives: Accept raw message payloads over the API.
        """

        fixture_path = Path(payload.fixture_path) if payload.fixture_path else DEFAULT_FIXTURE
        if not fixture_path.exists():
            raise HTTPException(status_code=404, detail="Fixture not found")
        messages = MockMessageSource(fixture_path).fetch_recent(payload.channel_id, payload.limit)
        ids = context.services_for_session(session).ingestion.ingest_messages(messages)
        return {"ingested": len(ids)}

    @app.get("/settings/notifications")
    def get_settings(session: Session = Depends(current_session)) -> dict[str, Any]:
        return _settings_payload(context.services_for_session(session).settings.get())

    @app.patch("/settings/notifications")
    def update_settings(
        payload: NotificationSettingsRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        settings = context.services_for_session(session).settings.update(
            enable_push=payload.enable_push,
            enable_email=payload.enable_email,
            enable_sound=payload.enable_sound,
        )
        return _settings_payload(settings)

    @app.post("/settings/notifications/mute/{channel_id}")
    def toggle_mute(channel_id: str, session: Session = Depends(current_session)) -> dict[str, Any]:
        settings = context.services_for_session(session).settings.toggle_mute(channel_id)
        return _settings_payload(settings)

    @app.get("/tickets")
    def list_tickets(session: Session = Depends(current_session)) -> list[dict[str, Any]]:
        tickets = context.services_for_session(session).tickets.list_tickets()
        return [_ticket_payload(ticket) for ticket in tickets]

    @app.post("/tickets")
    def create_ticket(
        payload: TicketCreateRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        ticket = context.services_for_session(session).tickets.create_ticket(
            payload.subject, payload.description, payload.priority
        )
        return _ticket_payload(ticket)

    @app.patch("/tickets/{ticket_id}")
    def update_ticket(
        ticket_id: int, payload: TicketUpdateRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        ticket = context.services_for_session(session).tickets.update_status(ticket_id, payload.status)
        return _ticket_payload(ticket)

    @app.delete("/tickets/{ticket_id}")
    def delete_ticket(ticket_id: int, session: Session = Depends(current_session)) -> dict[str, Any]:
        context.services_for_session(session).tickets.delete_ticket(ticket_id)
        return {"id": ticket_id, "deleted": True}

    @app.post("/api-keys")
    def create_api_key(
        payload: ApiKeyCreateRequest, session: Session = Depends(current_session)
    ) -> dict[str, Any]:
        """Summary: Create a new API key for the current user.

        Importance: Enables per-user API access without sharing the deployment key.
        Alternatives: Use a single shared API key.
        """

        api_keys = context.services_for_session(session).api_keys
        key_id, token = api_keys.create_api_key(session.user_id, payload.label)
        return {"id": key_id, "token": token, "label": payload.label}

    @app.get("/api-keys")
    def list_api_keys(session: Session = Depends(current_session)) -> list[dict[str, Any]]:
        keys = context.services_for_session(session).api_keys.list_api_keys(session.user_id)
        return [{"id": key.id, "label": key.label, "created_at": key.created_at} for key in keys]

    @app.delete("/api-keys/{key_id}")
    def revoke_api_key(key_id: int, session: Session = Depends(current_session)) -> dict[str, Any]:
        if not context.services_for_session(session).api_keys.revoke_api_key(session.user_id, key_id):
            raise HTTPException(status_code=404, detail="API key not found")
        return {"id": key_id, "deleted": True}

    @app.get("/notices")
    def list_notices(limit: int = 20, session: Session = Depends(current_session)) -> list[dict[str, Any]]:
        return [
            {
                "title": notice.title,
                "description": notice.description,
                "variant": notice.variant,
                "created_at": notice.created_at.isoformat(),
            }
            for notice in context.notices.recent(limit)
        ]

    @app.get("/stats")
    def stats(session: Session = Depends(current_session)) -> dict[str, int]:
        return context.services_for_session(session).stats.snapshot()

    return app


def app_from_env() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Used as the uvicorn factory so importing this module has no side effects.
    Alternatives: Create a module-level app at import time.
    """

    return create_app(AppConfig.from_env())


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


def _exchange_error_response(exc: ConnectError) -> JSONResponse:
    if isinstance(exc, OAuthConfigurationError):
        return JSONResponse(status_code=500, content={"error": "Configuration error", "details": str(exc)})
    if isinstance(exc, TransientNetworkError):
        return JSONResponse(status_code=502, content={"error": str(exc)})
    return JSONResponse(status_code=400, content={"error": str(exc)})


def _attempt_error_response(attempt: ConnectAttempt) -> JSONResponse:
    error = attempt.error or ConnectError("Connection failed")
    response = _exchange_error_response(error)
    if isinstance(error, OAuthConfigurationError):
        return response
    return JSONResponse(
        status_code=response.status_code,
        content={"error": str(error), "title": error.title, "retryable": error.retryable},
    )


def _attempt_payload(attempt: ConnectAttempt) -> dict[str, Any]:
    return {
        "state": attempt.state.value,
        "authorization_url": attempt.authorization_url,
        "channel": _channel_payload(attempt.channel) if attempt.channel else None,
        "error": str(attempt.error) if attempt.error else None,
        "started_at": attempt.started_at.isoformat(),
        "finished_at": attempt.finished_at.isoformat() if attempt.finished_at else None,
    }


def _channel_payload(channel: ChannelConnection) -> dict[str, Any]:
    """Summary: Serialize a channel without its credentials.

    Importance: Access and refresh tokens never leave the server through listings.
    Alternatives: Return a redacted credential blob.
    """

    return {
        "id": channel.id,
        "provider_type": channel.provider_type.value,
        "display_name": channel.display_name,
        "is_connected": channel.is_connected,
        "created_at": channel.created_at.isoformat(),
        "last_sync": channel.last_sync.isoformat() if channel.last_sync else None,
        "identity_name": channel.credentials.identity_name if channel.credentials else None,
    }


def _message_payload(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "channel_id": message.channel_id,
        "sender_id": message.sender_id,
        "sender_name": message.sender_name,
        "sender_avatar": message.sender_avatar,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
        "status": message.status.value,
        "is_starred": message.is_starred,
        "thread_id": message.thread_id,
        "parent_id": message.parent_id,
        "attachments": [
            {
                "id": attachment.id,
                "name": attachment.name,
                "mime_type": attachment.mime_type,
                "url": attachment.url,
                "size": attachment.size,
            }
            for attachment in message.attachments
        ],
    }


def _settings_payload(settings: NotificationSettings) -> dict[str, Any]:
    return {
        "enable_push": settings.enable_push,
        "enable_email": settings.enable_email,
        "enable_sound": settings.enable_sound,
        "muted_channels": sorted(settings.muted_channels),
    }


def _ticket_payload(ticket: Ticket) -> dict[str, Any]:
    return {
        "id": ticket.id,
        "subject": ticket.subject,
        "description": ticket.description,
        "priority": ticket.priority,
        "status": ticket.status.value,
        "created_at": ticket.created_at.isoformat(),
        "updated_at": ticket.updated_at.isoformat(),
    }
