from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Tuple

import asyncpg

from ..errors import ChannelAlreadyAllowed, PersistenceError
from .models import (
    ChannelAllowlistEntry,
    ConversationMemory,
    SystemInstructions,
    utcnow,
)
from .storage.utils import _clean_optional


logger = logging.getLogger("copilot_bot")


def _conversation_from_record(row: Any) -> ConversationMemory:
    return ConversationMemory(
        channel_id=str(row["channel_id"]),
        summary=str(row["summary"] or ""),
        recent_messages=ConversationMemory.parse_recent_messages(row["recent_messages"]),
        message_count=int(row["message_count"] or 0),
        last_message_at=row["last_message_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _channel_from_record(row: Any) -> ChannelAllowlistEntry:
    return ChannelAllowlistEntry(
        channel_id=str(row["channel_id"]),
        channel_name=row["channel_name"],
        server_id=row["server_id"],
        server_name=row["server_name"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
    )


class PostgresMemoryStore:
    """Postgres-backed store implementing the same API as MemoryStore."""

    SCHEMA_VERSION = 1
    backend_name = "postgres"

    def __init__(self, dsn: str, *, command_timeout: float = 30.0) -> None:
        self.dsn = dsn.strip()
        if not self.dsn:
            raise ValueError("MEMORY_POSTGRES_DSN cannot be empty")
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=6,
                command_timeout=self.command_timeout,
            )
        return self._pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            pool = await self._ensure_pool()
            async with pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
            raise PersistenceError(f"Postgres store error: {exc}") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        self._initialized = False

    async def ping(self) -> None:
        async with self._connection() as conn:
            await conn.execute("SELECT 1")

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return
            async with self._connection() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "CREATE TABLE IF NOT EXISTS memory_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
                    )
                    row = await conn.fetchrow("SELECT value FROM memory_meta WHERE key = 'schema_version'")
                    version = int(row["value"]) if row else 0
                    if version > self.SCHEMA_VERSION:
                        raise RuntimeError(
                            f"Postgres schema version {version} is newer than supported {self.SCHEMA_VERSION}. "
                            "Upgrade the bot before starting."
                        )
                    await self._create_schema(conn)
                    if version != self.SCHEMA_VERSION:
                        await conn.execute(
                            """
                            INSERT INTO memory_meta (key, value) VALUES ('schema_version', $1)
                            ON CONFLICT (key) DO UPDATE SET value = excluded.value
                            """,
                            str(self.SCHEMA_VERSION),
                        )
            self._initialized = True

    async def _create_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS conversation_memory (
                channel_id TEXT PRIMARY KEY,
                summary TEXT NOT NULL DEFAULT '',
                recent_messages JSONB NOT NULL DEFAULT '[]'::jsonb,
                message_count INTEGER NOT NULL DEFAULT 0,
                last_message_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS system_instructions (
                id BIGSERIAL PRIMARY KEY,
                instructions TEXT NOT NULL,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_system_instructions_single_active
            ON system_instructions(is_active) WHERE is_active
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS allowed_channels (
                id BIGSERIAL PRIMARY KEY,
                channel_id TEXT NOT NULL UNIQUE,
                channel_name TEXT,
                server_id TEXT,
                server_name TEXT,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )

    async def get_conversation(self, channel_id: str) -> Optional[ConversationMemory]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT channel_id, summary, recent_messages::text AS recent_messages, message_count,
                       last_message_at, created_at, updated_at
                FROM conversation_memory
                WHERE channel_id = $1
                """,
                channel_id,
            )
        if row is None:
            return None
        return _conversation_from_record(row)

    async def upsert_conversation(self, memory: ConversationMemory) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO conversation_memory (
                    channel_id, summary, recent_messages, message_count, last_message_at, created_at, updated_at
                )
                VALUES ($1, $2, $3::jsonb, $4, $5, NOW(), NOW())
                ON CONFLICT (channel_id) DO UPDATE SET
                    summary = excluded.summary,
                    recent_messages = excluded.recent_messages,
                    message_count = excluded.message_count,
                    last_message_at = excluded.last_message_at,
                    updated_at = NOW()
                """,
                memory.channel_id,
                memory.summary,
                memory.recent_messages_json(),
                memory.message_count,
                memory.last_message_at,
            )

    async def list_conversations(self, limit: int, offset: int) -> Tuple[List[ConversationMemory], int]:
        async with self._connection() as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM conversation_memory")
            rows = await conn.fetch(
                """
                SELECT channel_id, summary, recent_messages::text AS recent_messages, message_count,
                       last_message_at, created_at, updated_at
                FROM conversation_memory
                ORDER BY last_message_at DESC NULLS LAST, channel_id
                LIMIT $1 OFFSET $2
                """,
                limit,
                offset,
            )
        return [_conversation_from_record(row) for row in rows], int(total or 0)

    async def reset_conversation(self, channel_id: str) -> bool:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                UPDATE conversation_memory
                SET summary = '', recent_messages = '[]'::jsonb, message_count = 0, updated_at = NOW()
                WHERE channel_id = $1
                """,
                channel_id,
            )
        return _affected_rows(status) > 0

    async def reset_all_conversations(self) -> int:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                UPDATE conversation_memory
                SET summary = '', recent_messages = '[]'::jsonb, message_count = 0, updated_at = NOW()
                """
            )
        return _affected_rows(status)

    async def conversation_stats(self) -> Tuple[int, int]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT COUNT(*) AS channels, COALESCE(SUM(message_count), 0) AS messages FROM conversation_memory"
            )
        if row is None:
            return 0, 0
        return int(row["channels"]), int(row["messages"])

    async def get_active_instructions(self) -> Optional[SystemInstructions]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT instructions, updated_at FROM system_instructions WHERE is_active LIMIT 1"
            )
        if row is None:
            return None
        return SystemInstructions(text=str(row["instructions"]), updated_at=row["updated_at"])

    async def set_active_instructions(self, text: str) -> SystemInstructions:
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Instructions cannot be empty")
        now = utcnow()
        async with self._connection() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    "UPDATE system_instructions SET instructions = $1, updated_at = $2 WHERE is_active",
                    cleaned,
                    now,
                )
                if _affected_rows(status) == 0:
                    await conn.execute(
                        """
                        INSERT INTO system_instructions (instructions, is_active, created_at, updated_at)
                        VALUES ($1, TRUE, $2, $2)
                        """,
                        cleaned,
                        now,
                    )
        return SystemInstructions(text=cleaned, updated_at=now)

    async def get_channel(self, channel_id: str) -> Optional[ChannelAllowlistEntry]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT channel_id, channel_name, server_id, server_name, is_active, created_at
                FROM allowed_channels
                WHERE channel_id = $1
                """,
                channel_id,
            )
        if row is None:
            return None
        return _channel_from_record(row)

    async def is_channel_allowed(self, channel_id: str) -> bool:
        async with self._connection() as conn:
            value = await conn.fetchval(
                "SELECT 1 FROM allowed_channels WHERE channel_id = $1 AND is_active",
                channel_id,
            )
        return value is not None

    async def list_channels(self, *, active_only: bool = True) -> List[ChannelAllowlistEntry]:
        query = """
            SELECT channel_id, channel_name, server_id, server_name, is_active, created_at
            FROM allowed_channels
        """
        if active_only:
            query += " WHERE is_active"
        query += " ORDER BY created_at DESC, id DESC"
        async with self._connection() as conn:
            rows = await conn.fetch(query)
        return [_channel_from_record(row) for row in rows]

    async def add_channel(self, entry: ChannelAllowlistEntry) -> ChannelAllowlistEntry:
        channel_id = entry.channel_id.strip()
        async with self._connection() as conn:
            async with conn.transaction():
                current = await conn.fetchval(
                    "SELECT is_active FROM allowed_channels WHERE channel_id = $1 FOR UPDATE",
                    channel_id,
                )
                if current is True:
                    raise ChannelAlreadyAllowed(f"Channel {channel_id} is already in the allow-list")
                row = await conn.fetchrow(
                    """
                    INSERT INTO allowed_channels (channel_id, channel_name, server_id, server_name, is_active)
                    VALUES ($1, $2, $3, $4, TRUE)
                    ON CONFLICT (channel_id) DO UPDATE SET
                        channel_name = COALESCE(excluded.channel_name, allowed_channels.channel_name),
                        server_id = COALESCE(excluded.server_id, allowed_channels.server_id),
                        server_name = COALESCE(excluded.server_name, allowed_channels.server_name),
                        is_active = TRUE,
                        updated_at = NOW()
                    RETURNING channel_id, channel_name, server_id, server_name, is_active, created_at
                    """,
                    channel_id,
                    _clean_optional(entry.channel_name),
                    _clean_optional(entry.server_id),
                    _clean_optional(entry.server_name),
                )
        return _channel_from_record(row)

    async def deactivate_channel(self, channel_id: str) -> Optional[ChannelAllowlistEntry]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE allowed_channels SET is_active = FALSE, updated_at = NOW()
                WHERE channel_id = $1
                RETURNING channel_id, channel_name, server_id, server_name, is_active, created_at
                """,
                channel_id,
            )
        if row is None:
            return None
        return _channel_from_record(row)


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3".
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        logger.debug("Unexpected Postgres command status: %s", status)
        return 0
