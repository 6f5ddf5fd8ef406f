"""Summary: Command-line interface for Channel Nexus.

Importance: Provides a local-first entry point for inbox and channel workflows.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from channelnexus.app import build_context
from channelnexus.config import AppConfig
from channelnexus.models import Message, ProviderType
from channelnexus.oauth import parse_oauth_provider
from channelnexus.sources import MockMessageSource
from channelnexus.threads import InboxView, MessageFilter


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="Channel Nexus CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-channels", help="List connected channels")

    add_channel = subparsers.add_parser("add-channel", help="Add a channel without OAuth")
    add_channel.add_argument("provider_type", type=str, choices=[item.value for item in ProviderType])
    add_channel.add_argument("display_name", type=str)

    disconnect = subparsers.add_parser("disconnect", help="Disconnect a channel")
    disconnect.add_argument("channel_id", type=str)

    auth_url = subparsers.add_parser("auth-url", help="Print a provider authorization URL")
    auth_url.add_argument("provider", type=str)

    ingest_mock = subparsers.add_parser("ingest-mock", help="Ingest mock channel messages")
    ingest_mock.add_argument("channel_id", type=str)
    ingest_mock.add_argument("--limit", type=int, default=20)
    ingest_mock.add_argument(
        "--fixture", type=str, default=str(Path("data") / "mock_messages.json")
    )

    for name, help_text in (("list-messages", "List messages"), ("threads", "Show threaded inbox")):
        listing = subparsers.add_parser(name, help=help_text)
        listing.add_argument("--view", type=str, default=InboxView.ALL.value, choices=[v.value for v in InboxView])
        listing.add_argument("--channel", type=str, default=None)
        listing.add_argument("--search", type=str, default=None)

    read = subparsers.add_parser("read", help="Mark a message as read")
    read.add_argument("message_id", type=str)

    reply = subparsers.add_parser("reply", help="Reply to a message")
    reply.add_argument("message_id", type=str)
    reply.add_argument("content", type=str)

    for name in ("star", "unstar", "archive"):
        command = subparsers.add_parser(name, help=f"{name.capitalize()} a message")
        command.add_argument("message_id", type=str)

    subparsers.add_parser("stats", help="Show inbox statistics")

    create_key = subparsers.add_parser("create-api-key", help="Create an API key")
    create_key.add_argument("--label", type=str, default=None)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the inbox without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()

    if args.command == "serve":
        import uvicorn

        uvicorn.run(
            "channelnexus.api:app_from_env",
            factory=True,
            host=args.host or config.api_host,
            port=args.port or config.api_port,
        )
        return

    context = build_context(config)
    services = context.services_for_session(context.default_session())

    if args.command == "list-channels":
        for channel in services.channels.list():
            synced = channel.last_sync.isoformat() if channel.last_sync else "never"
            print(f"{channel.id} {channel.provider_type}: {channel.display_name} (last sync {synced})")
        return

    if args.command == "add-channel":
        channel = services.channels.add_manual(ProviderType(args.provider_type), args.display_name)
        print(f"Added channel {channel.id}.")
        return

    if args.command == "disconnect":
        services.channels.delete(args.channel_id)
        print(f"Disconnected channel {args.channel_id}.")
        return

    if args.command == "auth-url":
        provider = parse_oauth_provider(args.provider)
        print(context.authorizer().authorization_url(provider))
        return

    if args.command == "ingest-mock":
        source = MockMessageSource(Path(args.fixture))
        messages = source.fetch_recent(args.channel_id, args.limit)
        ids = services.ingestion.ingest_messages(messages)
        print(f"Ingested {len(ids)} messages from mock fixture.")
        return

    if args.command in {"list-messages", "threads"}:
        message_filter = MessageFilter(
            view=InboxView(args.view), channel_id=args.channel, search=args.search
        )
        if args.command == "list-messages":
            for message in services.messages.list(message_filter):
                print(_format_message(message))
            return
        thread_view = services.messages.threads(message_filter)
        for root in thread_view.roots:
            print(_format_message(root))
            for item in thread_view.replies_for(root):
                print(f"    {_format_message(item)}")
        return

    if args.command == "read":
        message = services.messages.mark_read(args.message_id)
        print(f"{message.id}: {message.status}")
        return

    if args.command == "reply":
        message = services.messages.reply(args.message_id, args.content)
        print(f"Sent reply {message.id} in thread {message.thread_id}.")
        return

    if args.command in {"star", "unstar"}:
        message = services.messages.star(args.message_id, args.command == "star")
        print(f"{message.id}: starred={message.is_starred}")
        return

    if args.command == "archive":
        message = services.messages.archive(args.message_id)
        print(f"{message.id}: {message.status}")
        return

    if args.command == "stats":
        snapshot = services.stats.snapshot()
        for key, value in snapshot.items():
            print(f"{key}: {value}")
        return

    if args.command == "create-api-key":
        key_id, token = services.api_keys.create_api_key(services.session.user_id, args.label)
        print(f"API key {key_id}: {token}")
        return


def _format_message(message: Message) -> str:
    star = "*" if message.is_starred else " "
    return f"{star} [{message.status}] {message.id} {message.sender_name}: {message.content}"


if __name__ == "__main__":
    run_cli()
