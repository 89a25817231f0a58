from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from copilot_bot.memory.models import ConversationMemory, MessageEntry, RollingWindow  # noqa: E402
from copilot_bot.memory.summary import SUMMARY_LABEL, SummaryGenerator  # noqa: E402


_TS = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def _entry(role: str, content: str) -> MessageEntry:
    return MessageEntry(role=role, content=content, timestamp=_TS)


def test_summarize_empty_window_returns_empty_string() -> None:
    assert SummaryGenerator().summarize([]) == ""


def test_summarize_keeps_long_tokens_in_original_order() -> None:
    messages = [
        _entry("user", "please explain python generators quickly"),
        _entry("assistant", "generators produce values lazily"),
    ]

    summary = SummaryGenerator().summarize(messages)

    assert summary == f"{SUMMARY_LABEL}please explain python generators quickly generators produce values lazily"


def test_summarize_drops_short_tokens_and_handles_no_topics() -> None:
    assert SummaryGenerator().summarize([_entry("user", "hi"), _entry("assistant", "yo")]) == SUMMARY_LABEL
    assert SummaryGenerator().summarize([_entry("user", "a bb ccc dddd eeeee ffffff")]) == f"{SUMMARY_LABEL}ffffff"


def test_summarize_caps_topics_at_twenty_tokens() -> None:
    words = [f"keyword{i:02d}" for i in range(40)]
    messages = [_entry("user", " ".join(words[:25])), _entry("assistant", " ".join(words[25:]))]

    summary = SummaryGenerator().summarize(messages)
    topics = summary[len(SUMMARY_LABEL):].split(" ")

    assert summary.startswith(SUMMARY_LABEL)
    assert topics == words[:20]


def test_rolling_window_evicts_oldest_first() -> None:
    window = RollingWindow(capacity=10)
    for i in range(12):
        window.push(_entry("user" if i % 2 == 0 else "assistant", f"m{i}"))

    assert len(window) == 10
    assert [entry.content for entry in window] == [f"m{i}" for i in range(2, 12)]


def test_rolling_window_eleventh_entry_evicts_the_first() -> None:
    window = RollingWindow(capacity=10)
    for i in range(10):
        window.push(_entry("user" if i % 2 == 0 else "assistant", f"m{i}"))
    assert [entry.content for entry in window][0] == "m0"

    window.push(_entry("user", "m10"))

    contents = [entry.content for entry in window]
    assert len(contents) == 10
    assert contents[0] == "m1"
    assert contents[-1] == "m10"


def test_rolling_window_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RollingWindow(capacity=0)


def test_message_entry_rejects_unknown_role() -> None:
    with pytest.raises(ValueError, match="Unsupported message role"):
        MessageEntry(role="system", content="x", timestamp=_TS)


def test_recent_messages_json_roundtrip_preserves_order_and_timestamps() -> None:
    memory = ConversationMemory(
        channel_id="C1",
        recent_messages=[_entry("user", "hello"), _entry("assistant", "hi there")],
    )

    parsed = ConversationMemory.parse_recent_messages(memory.recent_messages_json())

    assert parsed == memory.recent_messages
    assert ConversationMemory.parse_recent_messages("") == []
    assert ConversationMemory.parse_recent_messages('{"not": "a list"}') == []
