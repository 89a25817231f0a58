from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from copilot_bot.dispatcher import ResponseDispatcher  # noqa: E402
from copilot_bot.errors import PersistenceError  # noqa: E402
from copilot_bot.gate import AllowlistGate, InstructionsProvider  # noqa: E402
from copilot_bot.generation import FALLBACK_RESPONSE, ResponseGenerator  # noqa: E402
from copilot_bot.memory.manager import MemoryManager  # noqa: E402
from copilot_bot.memory.models import ConversationMemory, SystemInstructions  # noqa: E402
from copilot_bot.router import APOLOGY_RESPONSE, InboundMessage, MessageRouter, RouterState  # noqa: E402

BOT_ID = 4242


class _FakeStore:
    def __init__(self, allowed: set[str] | None = None) -> None:
        self.allowed = allowed or set()
        self.instructions: SystemInstructions | None = None
        self.records: dict[str, ConversationMemory] = {}
        self.upserts = 0
        self.fail_writes = False
        self.read_error: Exception | None = None

    async def is_channel_allowed(self, channel_id: str) -> bool:
        return channel_id in self.allowed

    async def get_active_instructions(self) -> SystemInstructions | None:
        return self.instructions

    async def get_conversation(self, channel_id: str) -> ConversationMemory | None:
        if self.read_error is not None:
            raise self.read_error
        return self.records.get(channel_id)

    async def upsert_conversation(self, memory: ConversationMemory) -> None:
        if self.fail_writes:
            raise PersistenceError("disk full")
        self.upserts += 1
        self.records[memory.channel_id] = memory


class _FakeLLM:
    def __init__(self, reply: str = "hi there", error: Exception | None = None, delay: float = 0.0) -> None:
        self.reply = reply
        self.error = error
        self.delay = delay
        self.prompts: list[list[dict[str, str]]] = []

    async def chat(self, messages, temperature=None, max_output_tokens=None) -> str:
        self.prompts.append(messages)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class _Destination:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    async def send(self, content: str, **kwargs: Any) -> None:
        if self.fail:
            raise ConnectionError("missing permissions")
        self.sent.append((content, kwargs))


def _router(store: _FakeStore, llm: _FakeLLM, **kwargs: Any) -> MessageRouter:
    return MessageRouter(
        gate=AllowlistGate(store),
        instructions=InstructionsProvider(store),
        memory=MemoryManager(store),
        generator=ResponseGenerator(llm),
        dispatcher=ResponseDispatcher(),
        bot_user_id=BOT_ID,
        **kwargs,
    )


def _dm(content: str, channel_id: str = "DM1") -> InboundMessage:
    return InboundMessage(
        author_is_bot=False,
        channel_id=channel_id,
        guild_id=None,
        mentions_bot=False,
        content=content,
        author_label="alice",
    )


def _guild(content: str, channel_id: str = "C1", mentions_bot: bool = True) -> InboundMessage:
    return InboundMessage(
        author_is_bot=False,
        channel_id=channel_id,
        guild_id="G1",
        mentions_bot=mentions_bot,
        content=content,
        author_label="bob",
    )


def test_dm_turn_replies_and_persists_exchange() -> None:
    store = _FakeStore()
    destination = _Destination()
    router = _router(store, _FakeLLM(reply="hi there"))

    outcome = asyncio.run(router.handle(_dm("hello"), destination))

    assert outcome.handled is True
    assert outcome.state == RouterState.IDLE
    assert destination.sent == [("hi there", {})]
    memory = store.records["DM1"]
    assert [(e.role, e.content) for e in memory.recent_messages] == [("user", "hello"), ("assistant", "hi there")]
    assert memory.message_count == 2


def test_guild_message_without_mention_is_ignored() -> None:
    store = _FakeStore(allowed={"C1"})
    destination = _Destination()
    llm = _FakeLLM()
    router = _router(store, llm)

    outcome = asyncio.run(router.handle(_guild("just chatting", mentions_bot=False), destination))

    assert outcome.handled is False
    assert outcome.drop_reason == "not_mentioned"
    assert destination.sent == []
    assert llm.prompts == []
    assert store.upserts == 0


def test_guild_message_in_disallowed_channel_is_ignored() -> None:
    store = _FakeStore(allowed={"C1"})
    destination = _Destination()
    router = _router(store, _FakeLLM())

    outcome = asyncio.run(router.handle(_guild(f"<@{BOT_ID}> hello", channel_id="C2"), destination))

    assert outcome.drop_reason == "channel_not_allowed"
    assert destination.sent == []
    assert store.upserts == 0


def test_bot_authored_messages_are_dropped_first() -> None:
    store = _FakeStore()
    destination = _Destination()
    router = _router(store, _FakeLLM())
    event = InboundMessage(
        author_is_bot=True,
        channel_id="DM1",
        guild_id=None,
        mentions_bot=False,
        content="hello",
    )

    outcome = asyncio.run(router.handle(event, destination))

    assert outcome.drop_reason == "bot_author"
    assert destination.sent == []


def test_bare_mention_still_gets_a_reply() -> None:
    store = _FakeStore(allowed={"C1"})
    destination = _Destination()
    llm = _FakeLLM(reply="How can I help?")
    router = _router(store, llm)

    outcome = asyncio.run(router.handle(_guild(f"<@{BOT_ID}>   "), destination))

    assert outcome.handled is True
    assert outcome.drop_reason is None
    assert llm.prompts[0][-1] == {"role": "user", "content": ""}
    assert destination.sent == [("How can I help?", {})]
    assert [(e.role, e.content) for e in store.records["C1"].recent_messages] == [
        ("user", ""),
        ("assistant", "How can I help?"),
    ]


def test_mention_is_stripped_before_generation_and_memory() -> None:
    store = _FakeStore(allowed={"C1"})
    store.instructions = SystemInstructions(text="Be a pirate.")
    destination = _Destination()
    llm = _FakeLLM(reply="Arr, hello!")
    router = _router(store, llm)

    asyncio.run(router.handle(_guild(f"<@!{BOT_ID}> hello matey"), destination, reference="orig"))

    prompt = llm.prompts[0]
    assert prompt[0] == {"role": "system", "content": "Be a pirate."}
    assert prompt[-1] == {"role": "user", "content": "hello matey"}
    assert destination.sent == [("Arr, hello!", {"reference": "orig"})]
    assert store.records["C1"].recent_messages[0].content == "hello matey"


def test_second_turn_carries_prior_context() -> None:
    store = _FakeStore()
    llm = _FakeLLM(reply="sure thing")
    router = _router(store, llm)

    async def _run() -> None:
        await router.handle(_dm("remember pineapples"), _Destination())
        await router.handle(_dm("what did I say?"), _Destination())

    asyncio.run(_run())

    second_prompt = llm.prompts[1]
    assert [m["role"] for m in second_prompt] == ["system", "assistant", "user"]
    assert "User: remember pineapples" in second_prompt[1]["content"]
    assert store.records["DM1"].message_count == 4


def test_backend_failure_sends_fallback_and_records_it() -> None:
    store = _FakeStore()
    destination = _Destination()
    router = _router(store, _FakeLLM(error=RuntimeError("timeout")))

    outcome = asyncio.run(router.handle(_dm("hello"), destination))

    assert outcome.used_fallback is True
    assert outcome.error is None
    assert destination.sent == [(FALLBACK_RESPONSE, {})]
    assert store.records["DM1"].recent_messages[-1].content == FALLBACK_RESPONSE


def test_memory_write_failure_does_not_affect_reply() -> None:
    store = _FakeStore()
    store.fail_writes = True
    destination = _Destination()
    router = _router(store, _FakeLLM(reply="hi there"))

    outcome = asyncio.run(router.handle(_dm("hello"), destination))

    assert outcome.error is None
    assert destination.sent == [("hi there", {})]


def test_unexpected_error_sends_single_apology() -> None:
    store = _FakeStore()
    store.read_error = RuntimeError("corrupted state")
    destination = _Destination()
    router = _router(store, _FakeLLM())

    outcome = asyncio.run(router.handle(_dm("hello"), destination, reference="orig"))

    assert isinstance(outcome.error, RuntimeError)
    assert destination.sent == [(APOLOGY_RESPONSE, {"reference": "orig"})]
    assert store.upserts == 0


def test_delivery_failure_skips_memory_write() -> None:
    store = _FakeStore()
    destination = _Destination(fail=True)
    router = _router(store, _FakeLLM(reply="hi there"))

    outcome = asyncio.run(router.handle(_dm("hello"), destination))

    assert outcome.error is not None
    assert store.upserts == 0


def test_typing_indicator_failure_is_not_fatal() -> None:
    store = _FakeStore()
    destination = _Destination()
    router = _router(store, _FakeLLM(reply="hi there"))

    async def _typing() -> None:
        raise ConnectionError("rate limited")

    outcome = asyncio.run(router.handle(_dm("hello"), destination, typing_indicator=_typing))

    assert outcome.error is None
    assert destination.sent == [("hi there", {})]


def test_same_channel_turns_are_serialized() -> None:
    store = _FakeStore()
    router = _router(store, _FakeLLM(reply="ok", delay=0.01))

    async def _run() -> None:
        await asyncio.gather(*(router.handle(_dm(f"message {i}"), _Destination()) for i in range(5)))

    asyncio.run(_run())

    memory = store.records["DM1"]
    assert memory.message_count == 10
    assert len(memory.recent_messages) == 10
    assert dict(router.channel_locks) == {}
