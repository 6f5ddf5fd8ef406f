"""Summary: Tests for inbox filtering and thread grouping.

Importance: Confirms the two-tier ordering and the filtered-pool grouping policy.
Alternatives: Check grouping only through the HTTP API.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from channelnexus.models import Message, MessageStatus
from channelnexus.threads import (
    InboxView,
    MessageFilter,
    filter_messages,
    group_threads,
    unread_count,
)


BASE = datetime(2024, 5, 1, 9, 0)


def _message(message_id: str, minutes: int, **fields) -> Message:
    return Message(
        id=message_id,
        channel_id=fields.pop("channel_id", "c1"),
        sender_name=fields.pop("sender_name", "Ana Ruiz"),
        content=fields.pop("content", f"message {message_id}"),
        created_at=BASE + timedelta(minutes=minutes),
        **fields,
    )


def test_roots_descend_and_replies_ascend() -> None:
    """Summary: Verify newest roots first and oldest replies first.

    Importance: Skims recent conversations while reading each one top to bottom.
    Alternatives: Sort everything by creation time.
    """

    messages = [
        _message("a", 0, thread_id="t1"),
        _message("b", 30),
        _message("r2", 20, thread_id="t1", parent_id="a"),
        _message("r1", 10, thread_id="t1", parent_id="a"),
    ]
    view = group_threads(messages)
    assert [root.id for root in view.roots] == ["b", "a"]
    assert [reply.id for reply in view.replies_for(view.roots[1])] == ["r1", "r2"]
    assert view.replies_for(view.roots[0]) == []


def test_standalone_root_finds_replies_by_its_own_id() -> None:
    messages = [
        _message("a", 0),
        _message("b", 5, thread_id="a", parent_id="a"),
    ]
    view = group_threads(messages)
    assert [root.id for root in view.roots] == ["a"]
    assert [reply.id for reply in view.replies_for(view.roots[0])] == ["b"]


def test_starred_filter_drops_unstarred_replies() -> None:
    """Summary: Verify grouping runs on the filtered pool only.

    Importance: A starred root whose reply is unstarred renders with zero replies.
    Alternatives: Group replies from the unfiltered pool.
    """

    messages = [
        _message("a", 0, is_starred=True),
        _message("b", 5, thread_id="a", parent_id="a"),
    ]
    visible = filter_messages(messages, MessageFilter(view=InboxView.STARRED))
    view = group_threads(visible)
    assert [message.id for message in visible] == ["a"]
    assert view.replies_for(view.roots[0]) == []


def test_archived_messages_leave_other_views() -> None:
    messages = [
        _message("a", 0, status=MessageStatus.ARCHIVED, is_starred=True),
        _message("b", 5),
    ]
    assert [m.id for m in filter_messages(messages, MessageFilter(view=InboxView.STARRED))] == []
    assert [m.id for m in filter_messages(messages, MessageFilter(view=InboxView.ARCHIVED))] == ["a"]
    assert [m.id for m in filter_messages(messages, MessageFilter(view=InboxView.UNREAD))] == ["b"]
    assert len(filter_messages(messages, MessageFilter())) == 2


def test_archived_reply_still_nests_in_unfiltered_view() -> None:
    messages = [
        _message("a", 0),
        _message("b", 5, thread_id="a", parent_id="a", status=MessageStatus.ARCHIVED),
    ]
    view = group_threads(filter_messages(messages, MessageFilter()))
    assert [reply.id for reply in view.replies_for(view.roots[0])] == ["b"]


def test_channel_and_search_filters() -> None:
    messages = [
        _message("a", 0, content="Launch review moved"),
        _message("b", 5, channel_id="c2", sender_name="Ben Okafor", content="lunch?"),
    ]
    assert [m.id for m in filter_messages(messages, MessageFilter(channel_id="c2"))] == ["b"]
    assert [m.id for m in filter_messages(messages, MessageFilter(search="LAUNCH"))] == ["a"]
    assert [m.id for m in filter_messages(messages, MessageFilter(search="okafor"))] == ["b"]


def test_unread_count() -> None:
    messages = [
        _message("a", 0),
        _message("b", 5, status=MessageStatus.READ),
        _message("c", 10),
    ]
    assert unread_count(messages) == 2
