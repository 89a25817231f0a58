from __future__ import annotations

from typing import Optional

from ..models import SystemInstructions, parse_timestamp
from .utils import _now_iso, _sqlite_memory_connection


class MemoryInstructionsMixin:
    async def get_active_instructions(self) -> Optional[SystemInstructions]:
        async with _sqlite_memory_connection(self.db_path) as db:
            async with db.execute(
                """
                SELECT instructions, updated_at
                FROM system_instructions
                WHERE is_active = 1
                LIMIT 1
                """
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return SystemInstructions(
            text=str(row["instructions"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    async def set_active_instructions(self, text: str) -> SystemInstructions:
        cleaned = text.strip()
        if not cleaned:
            raise ValueError("Instructions cannot be empty")
        now = _now_iso()
        async with _sqlite_memory_connection(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE system_instructions SET instructions = ?, updated_at = ? WHERE is_active = 1",
                (cleaned, now),
            )
            if cursor.rowcount == 0:
                await db.execute(
                    """
                    INSERT INTO system_instructions (instructions, is_active, created_at, updated_at)
                    VALUES (?, 1, ?, ?)
                    """,
                    (cleaned, now, now),
                )
            await db.commit()
        return SystemInstructions(text=cleaned, updated_at=parse_timestamp(now))
