from __future__ import annotations

import logging
from typing import Any

from .config import DEFAULT_SYSTEM_INSTRUCTIONS
from .errors import ConfigUnavailable, PersistenceError

logger = logging.getLogger("copilot_bot")


class AllowlistGate:
    """Answers whether the bot may respond in a guild channel. Errors fail closed."""

    def __init__(self, store: Any) -> None:
        self.store = store

    async def is_allowed(self, channel_id: str) -> bool:
        try:
            allowed = await self._lookup(channel_id)
        except ConfigUnavailable as exc:
            logger.error("Allow-list lookup failed for channel=%s, denying: %s", channel_id, exc)
            return False
        if not allowed:
            logger.info("Message ignored: channel %s is not in the allow-list", channel_id)
        return allowed

    async def _lookup(self, channel_id: str) -> bool:
        try:
            return bool(await self.store.is_channel_allowed(channel_id))
        except PersistenceError as exc:
            raise ConfigUnavailable(str(exc)) from exc
        except Exception as exc:
            # Unknown store failures must not let traffic through.
            raise ConfigUnavailable(f"unexpected allow-list error: {exc!r}") from exc


class InstructionsProvider:
    def __init__(self, store: Any, default: str = DEFAULT_SYSTEM_INSTRUCTIONS) -> None:
        self.store = store
        self.default = default

    async def get_active_instructions(self) -> str:
        try:
            record = await self.store.get_active_instructions()
        except Exception as exc:
            logger.error("Failed to load system instructions, using default: %s", exc)
            return self.default
        if record is None or not record.text.strip():
            return self.default
        return record.text
