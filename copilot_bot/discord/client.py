from __future__ import annotations

import asyncio
import logging
from typing import Any

import discord

from ..config import Settings
from ..router import InboundMessage, MessageRouter, RouteOutcome

logger = logging.getLogger("copilot_bot")


class CopilotDiscordBot(discord.Client):
    def __init__(
        self,
        settings: Settings,
        store: Any,
        llm: Any,
        router: MessageRouter,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.dm_messages = True
        intents.message_content = settings.discord_message_content_intent

        super().__init__(intents=intents)

        self.settings = settings
        self.store = store
        self.llm = llm
        self.router = router

    async def setup_hook(self) -> None:
        await self.store.init()
        await self.llm.start()

    async def close(self) -> None:
        await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
        await self._run_shutdown_step("store.close", self.store.close(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def on_ready(self) -> None:
        if self.user:
            self.router.bot_user_id = self.user.id
            logger.info("Connected as %s (%s), serving %s guilds", self.user, self.user.id, len(self.guilds))

    def to_inbound(self, message: discord.Message) -> InboundMessage:
        mentions_bot = bool(self.user) and any(user.id == self.user.id for user in message.mentions)
        return InboundMessage(
            author_is_bot=bool(message.author.bot),
            channel_id=str(message.channel.id),
            guild_id=str(message.guild.id) if message.guild else None,
            mentions_bot=mentions_bot,
            content=message.content or "",
            author_label=str(message.author),
        )

    async def on_message(self, message: discord.Message) -> None:
        event = self.to_inbound(message)
        outcome = await self.router.handle(
            event,
            message.channel,
            reference=message,
            typing_indicator=message.channel.typing,
        )
        self._log_outcome(event, outcome)

    @staticmethod
    def _log_outcome(event: InboundMessage, outcome: RouteOutcome) -> None:
        if outcome.drop_reason in (None, "bot_author", "not_mentioned"):
            return
        logger.debug("Message in channel=%s dropped: %s", event.channel_id, outcome.drop_reason)
