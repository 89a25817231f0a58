from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from .common import collapse_spaces, strip_bot_mention, truncate
from .dispatcher import ResponseDispatcher
from .errors import DeliveryError, GenerationError
from .gate import AllowlistGate, InstructionsProvider
from .generation import FALLBACK_RESPONSE, ResponseGenerator
from .memory.manager import MemoryManager, format_memory_for_context

logger = logging.getLogger("copilot_bot")

APOLOGY_RESPONSE = "Sorry, I encountered an error processing your message. Please try again."


class RouterState(str, enum.Enum):
    IDLE = "idle"
    FILTERING = "filtering"
    MEMORY_LOAD = "memory_load"
    GENERATING = "generating"
    DISPATCHING = "dispatching"
    MEMORY_PERSIST = "memory_persist"


@dataclass(frozen=True, slots=True)
class InboundMessage:
    author_is_bot: bool
    channel_id: str
    guild_id: str | None
    mentions_bot: bool
    content: str
    author_label: str = ""

    @property
    def is_direct_message(self) -> bool:
        return self.guild_id is None


@dataclass(slots=True)
class RouteOutcome:
    state: RouterState
    handled: bool = False
    reply: str | None = None
    used_fallback: bool = False
    drop_reason: str | None = None
    error: Exception | None = None


class MessageRouter:
    """Per-event pipeline: filter, load memory, generate, deliver, persist."""

    def __init__(
        self,
        *,
        gate: AllowlistGate,
        instructions: InstructionsProvider,
        memory: MemoryManager,
        generator: ResponseGenerator,
        dispatcher: ResponseDispatcher,
        bot_user_id: int | None = None,
        serialize_channels: bool = True,
        fallback_response: str = FALLBACK_RESPONSE,
        apology_response: str = APOLOGY_RESPONSE,
    ) -> None:
        self.gate = gate
        self.instructions = instructions
        self.memory = memory
        self.generator = generator
        self.dispatcher = dispatcher
        self.bot_user_id = bot_user_id
        self.serialize_channels = serialize_channels
        self.fallback_response = fallback_response
        self.apology_response = apology_response
        self.channel_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: dict[str, int] = defaultdict(int)

    async def handle(
        self,
        event: InboundMessage,
        destination: Any,
        reference: Any = None,
        typing_indicator: Callable[[], Awaitable[Any]] | None = None,
    ) -> RouteOutcome:
        outcome = RouteOutcome(state=RouterState.FILTERING)
        try:
            drop_reason = await self._filter(event)
            if drop_reason is not None:
                outcome.drop_reason = drop_reason
                outcome.state = RouterState.IDLE
                return outcome

            outcome.handled = True
            if typing_indicator is not None:
                try:
                    await typing_indicator()
                except Exception as exc:
                    logger.warning("Typing indicator failed for channel=%s: %s", event.channel_id, exc)
            async with self._channel_turn(event.channel_id):
                await self._run_turn(event, destination, reference, outcome)
            outcome.state = RouterState.IDLE
            return outcome
        except Exception as exc:
            outcome.error = exc
            if isinstance(exc, DeliveryError):
                logger.error(
                    "Delivery failed for channel=%s after %s/%s chunks: %s",
                    event.channel_id,
                    exc.chunks_sent,
                    exc.chunks_total,
                    exc,
                )
            else:
                logger.exception("Error handling message in channel=%s (state=%s)", event.channel_id, outcome.state.value)
            await self._send_apology(destination, reference)
            return outcome

    async def _filter(self, event: InboundMessage) -> str | None:
        if event.author_is_bot:
            return "bot_author"
        if not event.is_direct_message and not await self.gate.is_allowed(event.channel_id):
            return "channel_not_allowed"
        if not event.is_direct_message and not event.mentions_bot:
            return "not_mentioned"
        return None

    @contextlib.asynccontextmanager
    async def _channel_turn(self, channel_id: str) -> AsyncIterator[None]:
        if not self.serialize_channels:
            yield
            return
        self._lock_users[channel_id] += 1
        try:
            async with self.channel_locks[channel_id]:
                yield
        finally:
            self._lock_users[channel_id] -= 1
            if self._lock_users[channel_id] == 0:
                # No holder and no waiter left for this channel.
                del self._lock_users[channel_id]
                self.channel_locks.pop(channel_id, None)

    async def _run_turn(
        self,
        event: InboundMessage,
        destination: Any,
        reference: Any,
        outcome: RouteOutcome,
    ) -> None:
        outcome.state = RouterState.MEMORY_LOAD
        system_instructions = await self.instructions.get_active_instructions()
        conversation = await self.memory.read(event.channel_id)
        context = format_memory_for_context(conversation)

        outcome.state = RouterState.GENERATING
        user_text = strip_bot_mention(event.content, self.bot_user_id)
        logger.info(
            "[msg.user] channel=%s user=%s memory=%s text=\"%s\"",
            event.channel_id,
            event.author_label or "?",
            "new" if conversation.is_empty else "existing",
            truncate(collapse_spaces(user_text), 120),
        )
        try:
            reply = await self.generator.generate(system_instructions, context, user_text)
        except GenerationError as exc:
            logger.error("Failed to generate reply for channel=%s: %s", event.channel_id, exc)
            reply = self.fallback_response
            outcome.used_fallback = True

        outcome.state = RouterState.DISPATCHING
        await self.dispatcher.deliver(destination, reply, reference=reference)
        outcome.reply = reply
        logger.info("[msg.bot] channel=%s chars=%s text=\"%s\"", event.channel_id, len(reply), truncate(reply, 120))

        outcome.state = RouterState.MEMORY_PERSIST
        result = await self.memory.write(event.channel_id, user_text, reply)
        if not result.ok:
            logger.debug("Memory write for channel=%s dropped; reply already delivered", event.channel_id)

    async def _send_apology(self, destination: Any, reference: Any) -> None:
        kwargs: dict[str, Any] = {}
        if reference is not None:
            kwargs["reference"] = reference
        try:
            await destination.send(self.apology_response, **kwargs)
        except Exception as exc:
            logger.error("Failed to send apology reply: %s", exc)
