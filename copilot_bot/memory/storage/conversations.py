from __future__ import annotations

from typing import List, Optional, Tuple

import aiosqlite

from ..models import ConversationMemory, format_timestamp, parse_timestamp
from .utils import _now_iso, _sqlite_memory_connection


def _conversation_from_row(row: aiosqlite.Row) -> ConversationMemory:
    return ConversationMemory(
        channel_id=str(row["channel_id"]),
        summary=str(row["summary"] or ""),
        recent_messages=ConversationMemory.parse_recent_messages(row["recent_messages"]),
        message_count=int(row["message_count"] or 0),
        last_message_at=parse_timestamp(row["last_message_at"]),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


class MemoryConversationsMixin:
    async def get_conversation(self, channel_id: str) -> Optional[ConversationMemory]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT channel_id, summary, recent_messages, message_count,
                       last_message_at, created_at, updated_at
                FROM conversation_memory
                WHERE channel_id = ?
                """,
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _conversation_from_row(row)

    async def upsert_conversation(self, memory: ConversationMemory) -> None:
        now = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO conversation_memory (
                    channel_id, summary, recent_messages, message_count,
                    last_message_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(channel_id) DO UPDATE SET
                    summary = excluded.summary,
                    recent_messages = excluded.recent_messages,
                    message_count = excluded.message_count,
                    last_message_at = excluded.last_message_at,
                    updated_at = excluded.updated_at
                """,
                (
                    memory.channel_id,
                    memory.summary,
                    memory.recent_messages_json(),
                    memory.message_count,
                    format_timestamp(memory.last_message_at),
                    now,
                    now,
                ),
            )
            await db.commit()

    async def list_conversations(self, limit: int, offset: int) -> Tuple[List[ConversationMemory], int]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM conversation_memory") as cursor:
                total_row = await cursor.fetchone()
            async with db.execute(
                """
                SELECT channel_id, summary, recent_messages, message_count,
                       last_message_at, created_at, updated_at
                FROM conversation_memory
                ORDER BY last_message_at DESC, channel_id
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ) as cursor:
                rows = await cursor.fetchall()
        total = int(total_row[0]) if total_row else 0
        return [_conversation_from_row(row) for row in rows], total

    async def reset_conversation(self, channel_id: str) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE conversation_memory
                SET summary = '', recent_messages = '[]', message_count = 0, updated_at = ?
                WHERE channel_id = ?
                """,
                (_now_iso(), channel_id),
            )
            await db.commit()
            return cursor.rowcount > 0

    async def reset_all_conversations(self) -> int:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                """
                UPDATE conversation_memory
                SET summary = '', recent_messages = '[]', message_count = 0, updated_at = ?
                """,
                (_now_iso(),),
            )
            await db.commit()
            return max(0, cursor.rowcount)

    async def conversation_stats(self) -> Tuple[int, int]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT COUNT(*), COALESCE(SUM(message_count), 0) FROM conversation_memory"
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return 0, 0
        return int(row[0]), int(row[1])
