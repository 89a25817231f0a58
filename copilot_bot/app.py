from __future__ import annotations

import asyncio
import logging
from typing import Any

from .config import Settings
from .discord.client import CopilotDiscordBot
from .dispatcher import ResponseDispatcher
from .gate import AllowlistGate, InstructionsProvider
from .generation import ResponseGenerator
from .memory.factory import build_memory_store
from .memory.manager import MemoryManager
from .memory.summary import SummaryGenerator
from .router import MessageRouter
from .services.factory import build_llm_client

logger = logging.getLogger("copilot_bot")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.http").setLevel(logging.WARNING)


def build_router(settings: Settings, store: Any, llm: Any) -> MessageRouter:
    return MessageRouter(
        gate=AllowlistGate(store),
        instructions=InstructionsProvider(store, default=settings.default_system_instructions),
        memory=MemoryManager(store, SummaryGenerator()),
        generator=ResponseGenerator(
            llm,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
        ),
        dispatcher=ResponseDispatcher(),
        serialize_channels=settings.serialize_channel_turns,
    )


def build_bot(settings: Settings) -> CopilotDiscordBot:
    store = build_memory_store(settings)
    llm = build_llm_client(settings)
    router = build_router(settings, store, llm)
    return CopilotDiscordBot(settings=settings, store=store, llm=llm, router=router)


async def _run_bot(settings: Settings) -> None:
    bot = build_bot(settings)
    async with bot:
        await bot.start(settings.discord_token)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    settings.validate()
    logger.info("Starting Discord copilot bot (llm=%s memory=%s)", settings.llm_backend, settings.memory_backend)
    try:
        asyncio.run(_run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")


if __name__ == "__main__":
    main()
