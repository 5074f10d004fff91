"""PostgreSQL client for threads and messages."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import asyncpg

from chatzo_models import ContentPart, Message, MessageMetadata, Thread, User
from chatzo.config import settings
from chatzo.errors import ChatError
from chatzo.services.lifecycle import plan_truncation


SCHEMA_SQL = """
-- Users (resolved from identity provider subject)
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    email TEXT,
    name TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- Threads
CREATE TABLE IF NOT EXISTS threads (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    title TEXT NOT NULL DEFAULT 'New Chat',
    pinned BOOLEAN NOT NULL DEFAULT FALSE,
    is_live BOOLEAN NOT NULL DEFAULT FALSE,
    stream_started_at TIMESTAMPTZ,
    current_stream_id TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_threads_user_updated ON threads(user_id, updated_at DESC);

-- Messages (soft-deleted rows keep their public id, so live ids are unique per thread)
CREATE TABLE IF NOT EXISTS messages (
    row_id BIGSERIAL PRIMARY KEY,
    message_id TEXT NOT NULL,
    thread_id TEXT NOT NULL REFERENCES threads(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    parts JSONB NOT NULL DEFAULT '[]',
    metadata JSONB NOT NULL DEFAULT '{}',
    edited BOOLEAN NOT NULL DEFAULT FALSE,
    edited_at TIMESTAMPTZ,
    is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_thread ON messages(thread_id, row_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_live_id
    ON messages(thread_id, message_id) WHERE NOT is_deleted;
"""


def _dump_parts(parts: list[ContentPart]) -> str:
    return json.dumps([part.model_dump(mode="json") for part in parts])


def _load_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class Database:
    """PostgreSQL database client for threads and messages."""

    def __init__(self):
        self._pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool."""
        if not settings.database_url:
            return
        self._pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected")
        async with self._pool.acquire() as conn:
            yield conn

    async def ensure_tables_exist(self):
        """Create tables if they don't exist."""
        if not self._pool:
            return
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)

    # ============= User Operations =============

    async def get_user_by_external_id(self, external_id: str) -> User | None:
        """Resolve an identity provider subject to an internal user."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM users WHERE external_id = $1", external_id
            )
        if not row:
            return None
        return User(
            id=row["id"],
            external_id=row["external_id"],
            email=row["email"],
            name=row["name"],
        )

    # ============= Thread Operations =============

    async def create_thread_with_messages(
        self,
        user_id: str,
        user_message: Message,
        assistant_message_id: str,
    ) -> Thread:
        """Create a thread with its first user message and an empty assistant placeholder."""
        thread = Thread(user_id=user_id)
        async with self.connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO threads (id, user_id, title, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    thread.id,
                    thread.user_id,
                    thread.title,
                    thread.created_at,
                    thread.updated_at,
                )
                await self._insert_pair(conn, thread.id, user_message, assistant_message_id)
        return thread

    async def insert_turn(
        self,
        thread_id: str,
        user_message: Message,
        assistant_message_id: str,
    ) -> None:
        """Append a user message and an empty assistant placeholder to a thread."""
        async with self.connection() as conn:
            async with conn.transaction():
                await self._insert_pair(conn, thread_id, user_message, assistant_message_id)

    async def _insert_pair(
        self,
        conn: asyncpg.Connection,
        thread_id: str,
        user_message: Message,
        assistant_message_id: str,
    ) -> None:
        now = datetime.now(timezone.utc)
        await conn.execute(
            """
            INSERT INTO messages (message_id, thread_id, role, parts, created_at, updated_at)
            VALUES ($1, $2, 'user', $3, $4, $4)
            """,
            user_message.id,
            thread_id,
            _dump_parts(user_message.parts),
            now,
        )
        await self._insert_placeholder(conn, thread_id, assistant_message_id, now)

    async def _insert_placeholder(
        self,
        conn: asyncpg.Connection,
        thread_id: str,
        assistant_message_id: str,
        now: datetime,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO messages (message_id, thread_id, role, parts, created_at, updated_at)
            VALUES ($1, $2, 'assistant', '[]', $3, $3)
            """,
            assistant_message_id,
            thread_id,
            now,
        )
        await conn.execute(
            "UPDATE threads SET updated_at = $1 WHERE id = $2", now, thread_id
        )

    async def get_thread(self, thread_id: str) -> Thread | None:
        """Get a thread by ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow("SELECT * FROM threads WHERE id = $1", thread_id)
        if not row:
            return None
        return self._row_to_thread(row)

    async def list_threads(self, user_id: str, limit: int = 50, offset: int = 0) -> list[Thread]:
        """List threads for a user, pinned threads first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM threads
                WHERE user_id = $1
                ORDER BY pinned DESC, updated_at DESC
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                offset,
            )
        return [self._row_to_thread(row) for row in rows]

    async def search_threads(self, user_id: str, query: str, limit: int = 20) -> list[Thread]:
        """Search a user's threads by title."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM threads
                WHERE user_id = $1 AND title ILIKE $2
                ORDER BY updated_at DESC
                LIMIT $3
                """,
                user_id,
                f"%{query}%",
                limit,
            )
        return [self._row_to_thread(row) for row in rows]

    async def update_thread_title(self, thread_id: str, title: str) -> None:
        """Set the thread title."""
        async with self.connection() as conn:
            await conn.execute(
                "UPDATE threads SET title = $1, updated_at = $2 WHERE id = $3",
                title,
                datetime.now(timezone.utc),
                thread_id,
            )

    async def set_thread_pinned(self, thread_id: str, pinned: bool) -> None:
        """Pin or unpin a thread."""
        async with self.connection() as conn:
            await conn.execute(
                "UPDATE threads SET pinned = $1 WHERE id = $2", pinned, thread_id
            )

    async def delete_thread(self, thread_id: str) -> None:
        """Delete a thread and its messages."""
        async with self.connection() as conn:
            await conn.execute("DELETE FROM threads WHERE id = $1", thread_id)

    async def set_thread_streaming(
        self,
        thread_id: str,
        is_live: bool,
        stream_started_at: datetime | None = None,
        stream_id: str | None = None,
    ) -> None:
        """Set or clear the live-streaming flag. Stream fields are cleared with it."""
        async with self.connection() as conn:
            await conn.execute(
                """
                UPDATE threads
                SET is_live = $1, stream_started_at = $2, current_stream_id = $3, updated_at = $4
                WHERE id = $5
                """,
                is_live,
                stream_started_at if is_live else None,
                stream_id if is_live else None,
                datetime.now(timezone.utc),
                thread_id,
            )

    def _row_to_thread(self, row: asyncpg.Record) -> Thread:
        return Thread(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            pinned=row["pinned"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_live=row["is_live"],
            stream_started_at=row["stream_started_at"],
            current_stream_id=row["current_stream_id"],
        )

    # ============= Message Operations =============

    async def get_messages(self, thread_id: str) -> list[Message]:
        """Get the live messages of a thread, oldest first."""
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE thread_id = $1 AND NOT is_deleted
                ORDER BY row_id ASC
                """,
                thread_id,
            )
        return [self._row_to_message(row) for row in rows]

    async def get_message(self, thread_id: str, message_id: str) -> Message | None:
        """Get a live message by its public ID."""
        async with self.connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM messages
                WHERE thread_id = $1 AND message_id = $2 AND NOT is_deleted
                """,
                thread_id,
                message_id,
            )
        if not row:
            return None
        return self._row_to_message(row)

    async def patch_message(
        self,
        thread_id: str,
        message_id: str,
        parts: list[ContentPart],
        metadata: MessageMetadata | None = None,
    ) -> None:
        """Replace a message's parts and, optionally, its metadata."""
        now = datetime.now(timezone.utc)
        async with self.connection() as conn:
            if metadata is not None:
                await conn.execute(
                    """
                    UPDATE messages SET parts = $1, metadata = $2, updated_at = $3
                    WHERE thread_id = $4 AND message_id = $5 AND NOT is_deleted
                    """,
                    _dump_parts(parts),
                    metadata.model_dump_json(exclude_none=True),
                    now,
                    thread_id,
                    message_id,
                )
            else:
                await conn.execute(
                    """
                    UPDATE messages SET parts = $1, updated_at = $2
                    WHERE thread_id = $3 AND message_id = $4 AND NOT is_deleted
                    """,
                    _dump_parts(parts),
                    now,
                    thread_id,
                    message_id,
                )

    async def truncate_for_edit(
        self,
        thread_id: str,
        target_message_id: str,
        replacement_parts: list[ContentPart] | None,
        proposed_assistant_id: str,
    ) -> str:
        """Soft-delete everything after the target and insert a fresh assistant placeholder.

        Runs in one transaction holding the thread row lock, so racing
        edits on the same thread are serialized. The loser finds its target
        already soft-deleted and gets a conflict.

        Returns:
            The assistant message ID to generate into (reused when one existed).

        """
        now = datetime.now(timezone.utc)
        async with self.connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    "SELECT id FROM threads WHERE id = $1 FOR UPDATE", thread_id
                )
                rows = await conn.fetch(
                    """
                    SELECT * FROM messages
                    WHERE thread_id = $1 AND NOT is_deleted
                    ORDER BY row_id ASC
                    """,
                    thread_id,
                )
                messages = [self._row_to_message(row) for row in rows]
                plan = plan_truncation(messages, target_message_id, proposed_assistant_id)

                if plan is None:
                    deleted = await conn.fetchval(
                        "SELECT 1 FROM messages WHERE thread_id = $1 AND message_id = $2",
                        thread_id,
                        target_message_id,
                    )
                    raise ChatError("conflict:chat" if deleted else "not_found:message")

                removed_ids = [msg.id for msg in plan.removed]
                if removed_ids:
                    await conn.execute(
                        """
                        UPDATE messages SET is_deleted = TRUE, updated_at = $1
                        WHERE thread_id = $2 AND message_id = ANY($3::text[]) AND NOT is_deleted
                        """,
                        now,
                        thread_id,
                        removed_ids,
                    )

                if replacement_parts is not None:
                    await conn.execute(
                        """
                        UPDATE messages
                        SET parts = $1, edited = TRUE, edited_at = $2, updated_at = $2
                        WHERE thread_id = $3 AND message_id = $4 AND NOT is_deleted
                        """,
                        _dump_parts(replacement_parts),
                        now,
                        thread_id,
                        target_message_id,
                    )

                await conn.execute(
                    "UPDATE threads SET version = version + 1 WHERE id = $1", thread_id
                )
                await self._insert_placeholder(conn, thread_id, plan.assistant_message_id, now)
        return plan.assistant_message_id

    async def soft_delete_messages_after(self, thread_id: str, message_id: str) -> int:
        """Soft-delete every live message after `message_id`. Returns the count removed."""
        async with self.connection() as conn:
            async with conn.transaction():
                target_row = await conn.fetchval(
                    """
                    SELECT row_id FROM messages
                    WHERE thread_id = $1 AND message_id = $2 AND NOT is_deleted
                    """,
                    thread_id,
                    message_id,
                )
                if target_row is None:
                    raise ChatError("not_found:message")
                result = await conn.execute(
                    """
                    UPDATE messages SET is_deleted = TRUE, updated_at = $1
                    WHERE thread_id = $2 AND row_id > $3 AND NOT is_deleted
                    """,
                    datetime.now(timezone.utc),
                    thread_id,
                    target_row,
                )
        # asyncpg returns a status string such as "UPDATE 3"
        return int(result.split()[-1])

    def _row_to_message(self, row: asyncpg.Record) -> Message:
        return Message(
            id=row["message_id"],
            thread_id=row["thread_id"],
            role=row["role"],
            parts=_load_json(row["parts"], []),
            metadata=_load_json(row["metadata"], {}),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            edited=row["edited"],
            edited_at=row["edited_at"],
            is_deleted=row["is_deleted"],
        )


# Global database instance
db = Database()
