from __future__ import annotations

import logging
from typing import Any

from .common import DISCORD_MESSAGE_LIMIT, SAFE_CHUNK_LIMIT, chunk_text
from .errors import DeliveryError

logger = logging.getLogger("copilot_bot")


class ResponseDispatcher:
    def __init__(
        self,
        hard_limit: int = DISCORD_MESSAGE_LIMIT,
        chunk_limit: int = SAFE_CHUNK_LIMIT,
    ) -> None:
        if chunk_limit > hard_limit:
            raise ValueError("chunk_limit cannot exceed hard_limit")
        self.hard_limit = hard_limit
        self.chunk_limit = chunk_limit

    def split(self, text: str) -> list[str]:
        if len(text) <= self.hard_limit:
            return [text]
        return chunk_text(text, self.chunk_limit)

    async def deliver(self, destination: Any, text: str, reference: Any = None) -> int:
        """Send `text` to `destination` in order; every chunk replies to `reference`."""
        chunks = self.split(text)
        for index, chunk in enumerate(chunks):
            kwargs: dict[str, Any] = {}
            if reference is not None:
                kwargs["reference"] = reference
            try:
                await destination.send(chunk, **kwargs)
            except Exception as exc:
                raise DeliveryError(
                    f"Failed to send chunk {index + 1}/{len(chunks)}: {exc}",
                    chunks_sent=index,
                    chunks_total=len(chunks),
                ) from exc
        if len(chunks) > 1:
            logger.info("Delivered reply in %s chunks (%s chars)", len(chunks), len(text))
        return len(chunks)
