"""Summary: SQLite storage implementation for Channel Nexus.

Importance: Provides the local-first backend for channels, messages, settings, and tickets.
Alternatives: Use an ORM or a hosted database immediately.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from channelnexus.models import (
    Attachment,
    ChannelConnection,
    Message,
    MessageStatus,
    NotificationSettings,
    ProviderType,
    Ticket,
    TicketStatus,
    User,
)


@dataclass(frozen=True)
class StoredUser:
    id: int
    display_name: str
    email: str
    avatar: str | None


@dataclass(frozen=True)
class StoredApiKey:
    id: int
    user_id: int
    label: str | None
    created_at: str


@dataclass(frozen=True)
class StoredChannel:
    """Summary: Channel row with credentials still encoded.

    Importance: Keeps decoding of secrets in the service layer.
    Alternatives: Decode credentials inside the store.
    """

    id: str
    user_id: int
    provider_type: ProviderType
    display_name: str
    is_connected: bool
    credentials: str | None
    created_at: str
    last_sync: str | None


_MESSAGE_COLUMNS = (
    "id, channel_id, sender_id, sender_name, sender_avatar, content, status, "
    "is_starred, thread_id, parent_id, created_at"
)


class SqliteStore:
    """Summary: SQLite-backed storage for Channel Nexus.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before any service call.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    display_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    avatar TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS api_keys (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    token_hash TEXT NOT NULL UNIQUE,
                    label TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS channel_connections (
                    id TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    provider_type TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    is_connected INTEGER NOT NULL,
                    credentials TEXT,
                    created_at TEXT NOT NULL,
                    last_sync TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    user_id INTEGER NOT NULL,
                    channel_id TEXT NOT NULL,
                    sender_id TEXT,
                    sender_name TEXT NOT NULL,
                    sender_avatar TEXT,
                    content TEXT NOT NULL,
                    status TEXT NOT NULL,
                    is_starred INTEGER NOT NULL DEFAULT 0,
                    thread_id TEXT,
                    parent_id TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS attachments (
                    id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    url TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    PRIMARY KEY (message_id, id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS notification_settings (
                    user_id INTEGER PRIMARY KEY,
                    enable_push INTEGER NOT NULL,
                    enable_email INTEGER NOT NULL,
                    enable_sound INTEGER NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS muted_channels (
                    user_id INTEGER NOT NULL,
                    channel_id TEXT NOT NULL,
                    PRIMARY KEY (user_id, channel_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS tickets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    subject TEXT NOT NULL,
                    description TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_user ON messages (user_id, created_at)"
            )
            connection.commit()

    def ensure_user(self, user: User) -> int:
        """Summary: Ensure a user exists and return their ID.

        Importance: Provides a stable user record for data ownership.
        Alternatives: Omit user records in single-user mode.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "INSERT OR IGNORE INTO users (display_name, email, avatar) VALUES (?, ?, ?)",
                (user.display_name, user.email, user.avatar),
            )
            if cursor.rowcount:
                user_id = cursor.lastrowid
            else:
                cursor.execute("SELECT id FROM users WHERE email = ?", (user.email,))
                row = cursor.fetchone()
                user_id = int(row[0]) if row else 0
            connection.commit()
        return int(user_id)

    def get_user(self, user_id: int) -> StoredUser | None:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT id, display_name, email, avatar FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return StoredUser(*row) if row else None

    def update_user(self, user_id: int, display_name: str | None, avatar: str | None) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                """
                UPDATE users
                SET display_name = COALESCE(?, display_name), avatar = COALESCE(?, avatar)
                WHERE id = ?
                """,
                (display_name, avatar, user_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def create_api_key(
        self, user_id: int, token_hash: str, label: str | None, created_at: str
    ) -> int:
        with self._connection() as connection:
            cursor = connection.execute(
                "INSERT INTO api_keys (user_id, token_hash, label, created_at) VALUES (?, ?, ?, ?)",
                (user_id, token_hash, label, created_at),
            )
            connection.commit()
            return int(cursor.lastrowid)

    def list_api_keys(self, user_id: int) -> list[StoredApiKey]:
        with self._connection() as connection:
            rows = connection.execute(
                "SELECT id, user_id, label, created_at FROM api_keys WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
        return [StoredApiKey(*row) for row in rows]

    def delete_api_key(self, user_id: int, key_id: int) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id)
            )
            connection.commit()
            return cursor.rowcount > 0

    def get_user_id_by_api_key(self, token_hash: str) -> int | None:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT user_id FROM api_keys WHERE token_hash = ?", (token_hash,)
            ).fetchone()
        return int(row[0]) if row else None

    def add_channel(self, channel: ChannelConnection, encoded_credentials: str | None) -> str:
        """Summary: Insert a channel connection row.

        Importance: The only write path for new channels, OAuth or manual.
        Alternatives: Upsert on provider identity.
        """

        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO channel_connections (
                    id, user_id, provider_type, display_name, is_connected, credentials,
                    created_at, last_sync
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    channel.id,
                    channel.user_id,
                    channel.provider_type.value,
                    channel.display_name,
                    int(channel.is_connected),
                    encoded_credentials,
                    channel.created_at.isoformat(),
                    channel.last_sync.isoformat() if channel.last_sync else None,
                ),
            )
            connection.commit()
        return channel.id

    def list_channels(self, user_id: int) -> list[StoredChannel]:
        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT id, user_id, provider_type, display_name, is_connected, credentials,
                       created_at, last_sync
                FROM channel_connections WHERE user_id = ? ORDER BY created_at, id
                """,
                (user_id,),
            ).fetchall()
        return [_channel_from_row(row) for row in rows]

    def get_channel(self, user_id: int, channel_id: str) -> StoredChannel | None:
        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT id, user_id, provider_type, display_name, is_connected, credentials,
                       created_at, last_sync
                FROM channel_connections WHERE user_id = ? AND id = ?
                """,
                (user_id, channel_id),
            ).fetchone()
        return _channel_from_row(row) if row else None

    def delete_channel(self, user_id: int, channel_id: str) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM channel_connections WHERE user_id = ? AND id = ?",
                (user_id, channel_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def update_channel_sync(self, user_id: int, channel_id: str, synced_at: datetime) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "UPDATE channel_connections SET last_sync = ? WHERE user_id = ? AND id = ?",
                (synced_at.isoformat(), user_id, channel_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def save_messages(self, messages: Iterable[Message], user_id: int) -> list[str]:
        """Summary: Persist messages and their attachments.

        Importance: Re-ingesting the same provider message is a no-op; only new IDs are returned.
        Alternatives: Insert messages lazily on first query.
        """

        ids: list[str] = []
        with self._connection() as connection:
            cursor = connection.cursor()
            for message in messages:
                if _insert_message(cursor, message, user_id):
                    ids.append(message.id)
            connection.commit()
        return ids

    def list_messages(self, user_id: int) -> list[Message]:
        with self._connection() as connection:
            rows = connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE user_id = ? ORDER BY created_at",
                (user_id,),
            ).fetchall()
            attachments = _load_attachments(connection, [row[0] for row in rows])
        return [_message_from_row(row, attachments.get(row[0], ())) for row in rows]

    def get_message(self, user_id: int, message_id: str) -> Message | None:
        with self._connection() as connection:
            row = connection.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE user_id = ? AND id = ?",
                (user_id, message_id),
            ).fetchone()
            if not row:
                return None
            attachments = _load_attachments(connection, [message_id])
        return _message_from_row(row, attachments.get(message_id, ()))

    def update_message_status(self, user_id: int, message_id: str, status: MessageStatus) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "UPDATE messages SET status = ? WHERE user_id = ? AND id = ?",
                (status.value, user_id, message_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def set_message_starred(self, user_id: int, message_id: str, starred: bool) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "UPDATE messages SET is_starred = ? WHERE user_id = ? AND id = ?",
                (int(starred), user_id, message_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def record_reply(
        self, user_id: int, parent_id: str, parent_status: MessageStatus, reply: Message
    ) -> None:
        """Summary: Update the parent status and insert the reply in one transaction.

        Importance: Readers never see the reply without the parent's new status.
        Alternatives: Issue two independent writes.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                "UPDATE messages SET status = ? WHERE user_id = ? AND id = ?",
                (parent_status.value, user_id, parent_id),
            )
            if cursor.rowcount == 0:
                connection.rollback()
                raise LookupError(f"Message {parent_id} not found")
            _insert_message(cursor, reply, user_id)
            connection.commit()

    def count_messages(self, user_id: int, status: MessageStatus | None = None) -> int:
        query = "SELECT COUNT(*) FROM messages WHERE user_id = ?"
        params: tuple = (user_id,)
        if status is not None:
            query += " AND status = ?"
            params = (user_id, status.value)
        with self._connection() as connection:
            return int(connection.execute(query, params).fetchone()[0])

    def count_channels(self, user_id: int) -> int:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT COUNT(*) FROM channel_connections WHERE user_id = ? AND is_connected = 1",
                (user_id,),
            ).fetchone()
        return int(row[0])

    def get_notification_settings(self, user_id: int) -> NotificationSettings | None:
        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT enable_push, enable_email, enable_sound
                FROM notification_settings WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if not row:
                return None
            muted = connection.execute(
                "SELECT channel_id FROM muted_channels WHERE user_id = ?", (user_id,)
            ).fetchall()
        return NotificationSettings(
            user_id=user_id,
            enable_push=bool(row[0]),
            enable_email=bool(row[1]),
            enable_sound=bool(row[2]),
            muted_channels=frozenset(item[0] for item in muted),
        )

    def save_notification_settings(self, settings: NotificationSettings) -> None:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO notification_settings (user_id, enable_push, enable_email, enable_sound)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    enable_push = excluded.enable_push,
                    enable_email = excluded.enable_email,
                    enable_sound = excluded.enable_sound
                """,
                (
                    settings.user_id,
                    int(settings.enable_push),
                    int(settings.enable_email),
                    int(settings.enable_sound),
                ),
            )
            cursor.execute("DELETE FROM muted_channels WHERE user_id = ?", (settings.user_id,))
            cursor.executemany(
                "INSERT INTO muted_channels (user_id, channel_id) VALUES (?, ?)",
                [(settings.user_id, channel_id) for channel_id in sorted(settings.muted_channels)],
            )
            connection.commit()

    def create_ticket(
        self, user_id: int, subject: str, description: str, priority: str, created_at: datetime
    ) -> int:
        with self._connection() as connection:
            cursor = connection.execute(
                """
                INSERT INTO tickets (
                    user_id, subject, description, priority, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    subject,
                    description,
                    priority,
                    TicketStatus.OPEN.value,
                    created_at.isoformat(),
                    created_at.isoformat(),
                ),
            )
            connection.commit()
            return int(cursor.lastrowid)

    def list_tickets(self, user_id: int) -> list[Ticket]:
        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT id, user_id, subject, description, priority, status, created_at, updated_at
                FROM tickets WHERE user_id = ? ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        return [_ticket_from_row(row) for row in rows]

    def get_ticket(self, user_id: int, ticket_id: int) -> Ticket | None:
        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT id, user_id, subject, description, priority, status, created_at, updated_at
                FROM tickets WHERE user_id = ? AND id = ?
                """,
                (user_id, ticket_id),
            ).fetchone()
        return _ticket_from_row(row) if row else None

    def update_ticket_status(
        self, user_id: int, ticket_id: int, status: TicketStatus, updated_at: datetime
    ) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "UPDATE tickets SET status = ?, updated_at = ? WHERE user_id = ? AND id = ?",
                (status.value, updated_at.isoformat(), user_id, ticket_id),
            )
            connection.commit()
            return cursor.rowcount > 0

    def delete_ticket(self, user_id: int, ticket_id: int) -> bool:
        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM tickets WHERE user_id = ? AND id = ?", (user_id, ticket_id)
            )
            connection.commit()
            return cursor.rowcount > 0

    def count_tickets(self, user_id: int) -> int:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT COUNT(*) FROM tickets WHERE user_id = ? AND status != ?",
                (user_id, TicketStatus.CLOSED.value),
            ).fetchone()
        return int(row[0])

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()


def _insert_message(cursor: sqlite3.Cursor, message: Message, user_id: int) -> bool:
    cursor.execute(
        """
        INSERT OR IGNORE INTO messages (
            id, user_id, channel_id, sender_id, sender_name, sender_avatar, content, status,
            is_starred, thread_id, parent_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            message.id,
            user_id,
            message.channel_id,
            message.sender_id,
            message.sender_name,
            message.sender_avatar,
            message.content,
            message.status.value,
            int(message.is_starred),
            message.thread_id,
            message.parent_id,
            message.created_at.isoformat(),
        ),
    )
    if not cursor.rowcount:
        return False
    cursor.executemany(
        """
        INSERT OR IGNORE INTO attachments (id, message_id, position, name, mime_type, url, size)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (item.id, message.id, position, item.name, item.mime_type, item.url, item.size)
            for position, item in enumerate(message.attachments)
        ],
    )
    return True


def _load_attachments(
    connection: sqlite3.Connection, message_ids: list[str]
) -> dict[str, tuple[Attachment, ...]]:
    if not message_ids:
        return {}
    placeholders = ", ".join("?" for _ in message_ids)
    rows = connection.execute(
        f"""
        SELECT message_id, id, name, mime_type, url, size FROM attachments
        WHERE message_id IN ({placeholders}) ORDER BY message_id, position
        """,
        message_ids,
    ).fetchall()
    grouped: dict[str, list[Attachment]] = {}
    for message_id, attachment_id, name, mime_type, url, size in rows:
        grouped.setdefault(message_id, []).append(
            Attachment(id=attachment_id, name=name, mime_type=mime_type, url=url, size=size)
        )
    return {key: tuple(value) for key, value in grouped.items()}


def _message_from_row(row: tuple, attachments: tuple[Attachment, ...]) -> Message:
    return Message(
        id=row[0],
        channel_id=row[1],
        sender_id=row[2],
        sender_name=row[3],
        sender_avatar=row[4],
        content=row[5],
        status=MessageStatus(row[6]),
        is_starred=bool(row[7]),
        thread_id=row[8],
        parent_id=row[9],
        created_at=datetime.fromisoformat(row[10]),
        attachments=attachments,
    )


def _channel_from_row(row: tuple) -> StoredChannel:
    return StoredChannel(
        id=row[0],
        user_id=int(row[1]),
        provider_type=ProviderType(row[2]),
        display_name=row[3],
        is_connected=bool(row[4]),
        credentials=row[5],
        created_at=row[6],
        last_sync=row[7],
    )


def _ticket_from_row(row: tuple) -> Ticket:
    return Ticket(
        id=int(row[0]),
        user_id=int(row[1]),
        subject=row[2],
        description=row[3],
        priority=row[4],
        status=TicketStatus(row[5]),
        created_at=datetime.fromisoformat(row[6]),
        updated_at=datetime.fromisoformat(row[7]),
    )
