from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import PersistenceError
from .models import (
    WINDOW_CAPACITY,
    ConversationMemory,
    MessageEntry,
    RollingWindow,
    utcnow,
)
from .summary import SummaryGenerator

logger = logging.getLogger("copilot_bot")


@dataclass(frozen=True, slots=True)
class MemoryWriteResult:
    """Outcome of a best-effort memory write; callers decide whether to log or drop it."""

    channel_id: str
    ok: bool
    memory: ConversationMemory | None = None
    error: Exception | None = None


def format_memory_for_context(memory: ConversationMemory | None) -> str:
    if memory is None:
        return ""
    context = ""
    if memory.summary:
        context += f"Previous conversation summary: {memory.summary}\n\n"
    if memory.recent_messages:
        context += "Recent messages:\n"
        for entry in memory.recent_messages:
            speaker = "User" if entry.role == "user" else "Assistant"
            context += f"{speaker}: {entry.content}\n"
    return context


class MemoryManager:
    """Owns the read-modify-write cycle of per-channel conversation memory."""

    def __init__(
        self,
        store: Any,
        summarizer: SummaryGenerator | None = None,
        window_capacity: int = WINDOW_CAPACITY,
    ) -> None:
        self.store = store
        self.summarizer = summarizer or SummaryGenerator()
        self.window_capacity = window_capacity

    async def read(self, channel_id: str) -> ConversationMemory:
        try:
            memory = await self.store.get_conversation(channel_id)
        except (PersistenceError, ValueError) as exc:
            logger.error("Memory read failed for channel=%s: %s", channel_id, exc)
            return ConversationMemory.empty(channel_id)
        return memory or ConversationMemory.empty(channel_id)

    async def write(self, channel_id: str, user_text: str, assistant_text: str) -> MemoryWriteResult:
        try:
            existing = await self.store.get_conversation(channel_id)
            updated = self._apply_exchange(
                existing or ConversationMemory.empty(channel_id),
                user_text,
                assistant_text,
            )
            await self.store.upsert_conversation(updated)
        except (PersistenceError, ValueError) as exc:
            logger.error("Memory write failed for channel=%s: %s", channel_id, exc)
            return MemoryWriteResult(channel_id=channel_id, ok=False, error=exc)

        logger.info(
            "Updated memory for channel=%s (window=%s, count=%s)",
            channel_id,
            len(updated.recent_messages),
            updated.message_count,
        )
        return MemoryWriteResult(channel_id=channel_id, ok=True, memory=updated)

    async def reset(self, channel_id: str) -> bool:
        try:
            return await self.store.reset_conversation(channel_id)
        except PersistenceError as exc:
            logger.error("Memory reset failed for channel=%s: %s", channel_id, exc)
            return False

    def _apply_exchange(
        self,
        memory: ConversationMemory,
        user_text: str,
        assistant_text: str,
    ) -> ConversationMemory:
        now = utcnow()
        window = RollingWindow(memory.recent_messages, capacity=self.window_capacity)
        window.push(MessageEntry(role="user", content=user_text, timestamp=now))
        window.push(MessageEntry(role="assistant", content=assistant_text, timestamp=now))
        recent = window.to_list()
        return ConversationMemory(
            channel_id=memory.channel_id,
            summary=self.summarizer.summarize(recent),
            recent_messages=recent,
            message_count=memory.message_count + 2,
            last_message_at=now,
            created_at=memory.created_at,
            updated_at=now,
        )
