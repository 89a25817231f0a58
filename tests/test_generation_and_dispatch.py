from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from copilot_bot.common import chunk_text, strip_bot_mention  # noqa: E402
from copilot_bot.dispatcher import ResponseDispatcher  # noqa: E402
from copilot_bot.errors import DeliveryError, GenerationError  # noqa: E402
from copilot_bot.generation import ResponseGenerator, build_prompt_messages  # noqa: E402


class _FakeLLM:
    def __init__(self, reply: str = "ok", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, temperature=None, max_output_tokens=None) -> str:
        self.calls.append(
            {
                "messages": messages,
                "temperature": temperature,
                "max_output_tokens": max_output_tokens,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply


class _Destination:
    def __init__(self, fail_on: int | None = None) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.fail_on = fail_on

    async def send(self, content: str, **kwargs: Any) -> None:
        if self.fail_on is not None and len(self.sent) == self.fail_on:
            raise ConnectionError("gateway closed")
        self.sent.append((content, kwargs))


def test_prompt_messages_are_ordered_system_context_user() -> None:
    messages = build_prompt_messages("Be helpful.", "Recent messages:\nUser: hi\n", "what now?")

    assert [m["role"] for m in messages] == ["system", "assistant", "user"]
    assert messages[0]["content"] == "Be helpful."
    assert messages[1]["content"] == "Conversation summary:\nRecent messages:\nUser: hi\n"
    assert messages[2]["content"] == "what now?"


def test_prompt_messages_skip_empty_context() -> None:
    messages = build_prompt_messages("Be helpful.", "", "hello")

    assert [m["role"] for m in messages] == ["system", "user"]


def test_generate_passes_fixed_sampling_settings() -> None:
    llm = _FakeLLM(reply="  hi there  ")
    generator = ResponseGenerator(llm, temperature=0.7, max_output_tokens=400)

    reply = asyncio.run(generator.generate("sys", "", "hello"))

    assert reply == "hi there"
    assert llm.calls[0]["temperature"] == 0.7
    assert llm.calls[0]["max_output_tokens"] == 400


def test_generate_wraps_backend_failures() -> None:
    generator = ResponseGenerator(_FakeLLM(error=RuntimeError("Groq request failed after retries")))

    with pytest.raises(GenerationError, match="Backend call failed"):
        asyncio.run(generator.generate("sys", "", "hello"))


def test_generate_rejects_empty_reply() -> None:
    generator = ResponseGenerator(_FakeLLM(reply="   "))

    with pytest.raises(GenerationError, match="empty reply"):
        asyncio.run(generator.generate("sys", "", "hello"))


def test_chunk_text_splits_long_text_losslessly() -> None:
    text = "\n".join(f"line {i} " + "x" * 90 for i in range(60))

    chunks = chunk_text(text, 1900)

    assert len(chunks) >= 2
    assert all(len(chunk) <= 1900 for chunk in chunks)
    assert "".join(chunks) == text


def test_chunk_text_hard_splits_a_single_long_line() -> None:
    text = "a" * 4000

    chunks = chunk_text(text, 1900)

    assert [len(c) for c in chunks] == [1900, 1900, 200]
    assert "".join(chunks) == text


def test_dispatcher_chunks_are_maximal_across_line_breaks() -> None:
    text = "a" * 1000 + "\n" + "b" * 1000 + "\n" + "c" * 500

    chunks = ResponseDispatcher().split(text)

    assert [len(c) for c in chunks] == [1900, 602]
    assert all(len(c) == 1900 for c in chunks[:-1])
    assert "".join(chunks) == text


def test_dispatcher_sends_short_reply_whole() -> None:
    destination = _Destination()
    text = "y" * 2000

    sent = asyncio.run(ResponseDispatcher().deliver(destination, text, reference="msg-1"))

    assert sent == 1
    assert destination.sent == [(text, {"reference": "msg-1"})]


def test_dispatcher_chunks_long_reply_and_every_chunk_replies() -> None:
    destination = _Destination()
    text = "z" * 2500

    sent = asyncio.run(ResponseDispatcher().deliver(destination, text, reference="msg-1"))

    assert sent == 2
    assert all(len(content) <= 1900 for content, _ in destination.sent)
    assert "".join(content for content, _ in destination.sent) == text
    assert [kwargs for _, kwargs in destination.sent] == [{"reference": "msg-1"}, {"reference": "msg-1"}]


def test_dispatcher_aborts_on_first_failed_chunk() -> None:
    destination = _Destination(fail_on=1)

    with pytest.raises(DeliveryError) as excinfo:
        asyncio.run(ResponseDispatcher().deliver(destination, "q" * 5000))

    assert excinfo.value.chunks_sent == 1
    assert excinfo.value.chunks_total == 3
    assert len(destination.sent) == 1


def test_strip_bot_mention_handles_both_mention_forms() -> None:
    assert strip_bot_mention("<@42> hello", 42) == "hello"
    assert strip_bot_mention("<@!42>   hello <@7>", 42) == "hello <@7>"
    assert strip_bot_mention("<@42>", None) == ""
