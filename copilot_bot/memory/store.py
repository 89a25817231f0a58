from __future__ import annotations

from .storage.channels import MemoryChannelsMixin
from .storage.conversations import MemoryConversationsMixin
from .storage.instructions import MemoryInstructionsMixin
from .storage.schema import MemorySchemaMixin
from .storage.utils import _sqlite_memory_connection


class MemoryStore(
    MemorySchemaMixin,
    MemoryConversationsMixin,
    MemoryInstructionsMixin,
    MemoryChannelsMixin,
):
    """SQLite store for per-channel conversation memory, system instructions and the channel allow-list."""

    backend_name = "sqlite"

    async def ping(self) -> None:
        async with _sqlite_memory_connection(self.db_path) as db:
            await db.execute("SELECT 1")
