from __future__ import annotations

from typing import List, Optional

import aiosqlite

from ...errors import ChannelAlreadyAllowed, PersistenceError
from ..models import ChannelAllowlistEntry, parse_timestamp
from .utils import _clean_optional, _now_iso, _sqlite_memory_connection


def _channel_from_row(row: aiosqlite.Row) -> ChannelAllowlistEntry:
    return ChannelAllowlistEntry(
        channel_id=str(row["channel_id"]),
        channel_name=row["channel_name"],
        server_id=row["server_id"],
        server_name=row["server_name"],
        is_active=bool(row["is_active"]),
        created_at=parse_timestamp(row["created_at"]),
    )


class MemoryChannelsMixin:
    async def get_channel(self, channel_id: str) -> Optional[ChannelAllowlistEntry]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT channel_id, channel_name, server_id, server_name, is_active, created_at
                FROM allowed_channels
                WHERE channel_id = ?
                """,
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return _channel_from_row(row)

    async def is_channel_allowed(self, channel_id: str) -> bool:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT 1 FROM allowed_channels WHERE channel_id = ? AND is_active = 1",
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return row is not None

    async def list_channels(self, *, active_only: bool = True) -> List[ChannelAllowlistEntry]:
        query = """
            SELECT channel_id, channel_name, server_id, server_name, is_active, created_at
            FROM allowed_channels
        """
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at DESC, id DESC"
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(query) as cursor:
                rows = await cursor.fetchall()
        return [_channel_from_row(row) for row in rows]

    async def add_channel(self, entry: ChannelAllowlistEntry) -> ChannelAllowlistEntry:
        now = _now_iso()
        channel_id = entry.channel_id.strip()
        params = (
            _clean_optional(entry.channel_name),
            _clean_optional(entry.server_id),
            _clean_optional(entry.server_name),
        )
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                "SELECT is_active FROM allowed_channels WHERE channel_id = ?",
                (channel_id,),
            ) as cursor:
                row = await cursor.fetchone()
            if row is not None and bool(row["is_active"]):
                raise ChannelAlreadyAllowed(f"Channel {channel_id} is already in the allow-list")
            if row is None:
                await db.execute(
                    """
                    INSERT INTO allowed_channels (
                        channel_id, channel_name, server_id, server_name, is_active, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, 1, ?, ?)
                    """,
                    (channel_id, *params, now, now),
                )
            else:
                # Soft-deleted rows are reactivated in place to keep their history.
                await db.execute(
                    """
                    UPDATE allowed_channels
                    SET channel_name = COALESCE(?, channel_name),
                        server_id = COALESCE(?, server_id),
                        server_name = COALESCE(?, server_name),
                        is_active = 1,
                        updated_at = ?
                    WHERE channel_id = ?
                    """,
                    (*params, now, channel_id),
                )
            await db.commit()
        stored = await self.get_channel(channel_id)
        if stored is None:
            raise PersistenceError(f"Channel {channel_id} was not found after write")
        return stored

    async def deactivate_channel(self, channel_id: str) -> Optional[ChannelAllowlistEntry]:
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE allowed_channels SET is_active = 0, updated_at = ? WHERE channel_id = ?",
                (_now_iso(), channel_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                return None
        return await self.get_channel(channel_id)
