"""Summary: Filtering and thread grouping for inbox views.

Importance: Derives read-time views without touching the stored messages.
Alternatives: Store precomputed thread trees alongside messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Iterable

from channelnexus.models import Message, MessageStatus


class InboxView(StrEnum):
    ALL = "all"
    UNREAD = "unread"
    STARRED = "starred"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class MessageFilter:
    """Summary: Describes which messages a view shows.

    Importance: One filter shape is shared by the API, the CLI, and the store.
    Alternatives: Pass loose keyword arguments to every listing call.
    """

    view: InboxView = InboxView.ALL
    channel_id: str | None = None
    search: str | None = None

    def matches(self, message: Message) -> bool:
        if self.view == InboxView.UNREAD and message.status != MessageStatus.UNREAD:
            return False
        if self.view == InboxView.STARRED and (
            not message.is_starred or message.status == MessageStatus.ARCHIVED
        ):
            return False
        if self.view == InboxView.ARCHIVED and message.status != MessageStatus.ARCHIVED:
            return False
        if self.channel_id and message.channel_id != self.channel_id:
            return False
        if self.search:
            term = self.search.lower()
            if term not in message.content.lower() and term not in message.sender_name.lower():
                return False
        return True


def filter_messages(messages: Iterable[Message], message_filter: MessageFilter) -> list[Message]:
    return [message for message in messages if message_filter.matches(message)]


@dataclass(frozen=True)
class ThreadView:
    """Summary: Roots newest-first with their replies oldest-first.

    Importance: Skims newest activity first while reading each conversation top to bottom.
    Alternatives: Render a flat, time-ordered list.
    """

    roots: list[Message]
    replies: dict[str, list[Message]] = field(default_factory=dict)

    def replies_for(self, root: Message) -> list[Message]:
        return self.replies.get(thread_key(root), [])


def thread_key(root: Message) -> str:
    """Summary: Key under which a root's replies are grouped.

    Importance: A standalone root gains replies keyed by its own ID after the first reply.
    Alternatives: Rewrite the root's thread ID when the first reply arrives.
    """

    return root.thread_id or root.id


def group_threads(messages: Iterable[Message]) -> ThreadView:
    """Summary: Partition messages into roots and per-thread reply lists.

    Importance: Grouping only sees the messages it is given, so filters apply first.
    Alternatives: Always group from the full message pool.
    """

    roots: list[Message] = []
    replies: dict[str, list[Message]] = {}
    for message in messages:
        if message.is_reply:
            replies.setdefault(message.thread_id, []).append(message)
        else:
            roots.append(message)
    roots.sort(key=lambda message: message.created_at, reverse=True)
    for thread in replies.values():
        thread.sort(key=lambda message: message.created_at)
    return ThreadView(roots=roots, replies=replies)


def unread_count(messages: Iterable[Message]) -> int:
    return sum(1 for message in messages if message.status == MessageStatus.UNREAD)
