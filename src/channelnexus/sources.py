"""Summary: Message sources that feed channels with provider messages.

Importance: Keeps message sync separate from storage and status handling.
Alternatives: Embed provider polling inside the message service.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from channelnexus.models import Attachment, Message, MessageStatus


class MessageSource(ABC):
    """Summary: Defines the interface for channel message sources.

    Importance: Enables swapping mock fixtures for live provider APIs.
    Alternatives: Use separate ingestion functions per provider.
    """

    @abstractmethod
    def fetch_recent(self, channel_id: str, limit: int) -> list[Message]:
        """Summary: Return the most recent messages for a channel."""


class MockMessageSource(MessageSource):
    """Summary: Loads channel messages from a local JSON fixture.

    Importance: Supports offline testing and demos without provider tokens.
    Alternatives: Generate synthetic messages at random.
    """

    def __init__(self, fixture_path: Path) -> None:
        self._fixture_path = fixture_path

    def fetch_recent(self, channel_id: str, limit: int) -> list[Message]:
        """Summary: Load fixture messages and bind them to a channel.

        Importance: Fixture IDs are scoped by channel so repeated ingests into
        different channels never collide, while re-ingesting one channel is idempotent.
        Alternatives: Require fixtures to carry real channel IDs.
        """

        data = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        messages = [_parse_fixture_message(channel_id, item) for item in data]
        return messages[:limit]


def _parse_fixture_message(channel_id: str, item: dict[str, Any]) -> Message:
    def scoped(value: str | None) -> str | None:
        return f"{channel_id}:{value}" if value else None

    return Message(
        id=scoped(item["id"]),
        channel_id=channel_id,
        sender_id=item.get("sender_id"),
        sender_name=item["sender_name"],
        sender_avatar=item.get("sender_avatar"),
        content=item["content"],
        created_at=datetime.fromisoformat(item["created_at"]),
        status=MessageStatus(item.get("status", MessageStatus.UNREAD)),
        is_starred=bool(item.get("is_starred", False)),
        thread_id=scoped(item.get("thread_id")),
        parent_id=scoped(item.get("parent_id")),
        attachments=tuple(
            Attachment(
                id=scoped(attachment["id"]),
                name=attachment["name"],
                mime_type=attachment["mime_type"],
                url=attachment["url"],
                size=int(attachment["size"]),
            )
            for attachment in item.get("attachments", [])
        ),
    )
