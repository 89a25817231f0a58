from __future__ import annotations

import asyncio
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from copilot_bot.config import DEFAULT_SYSTEM_INSTRUCTIONS  # noqa: E402
from copilot_bot.errors import PersistenceError  # noqa: E402
from copilot_bot.gate import AllowlistGate, InstructionsProvider  # noqa: E402
from copilot_bot.memory.models import SystemInstructions  # noqa: E402


class _AllowlistStore:
    def __init__(self, allowed: set[str], error: Exception | None = None) -> None:
        self.allowed = allowed
        self.error = error
        self.calls: list[str] = []

    async def is_channel_allowed(self, channel_id: str) -> bool:
        self.calls.append(channel_id)
        if self.error is not None:
            raise self.error
        return channel_id in self.allowed


class _InstructionsStore:
    def __init__(self, record: SystemInstructions | None = None, error: Exception | None = None) -> None:
        self.record = record
        self.error = error

    async def get_active_instructions(self) -> SystemInstructions | None:
        if self.error is not None:
            raise self.error
        return self.record


def test_gate_allows_only_active_entries() -> None:
    gate = AllowlistGate(_AllowlistStore({"111"}))

    assert asyncio.run(gate.is_allowed("111")) is True
    assert asyncio.run(gate.is_allowed("222")) is False


def test_gate_fails_closed_on_store_errors() -> None:
    persistence = AllowlistGate(_AllowlistStore({"111"}, error=PersistenceError("db locked")))
    unexpected = AllowlistGate(_AllowlistStore({"111"}, error=KeyError("boom")))

    assert asyncio.run(persistence.is_allowed("111")) is False
    assert asyncio.run(unexpected.is_allowed("111")) is False


def test_instructions_provider_prefers_stored_text() -> None:
    provider = InstructionsProvider(_InstructionsStore(SystemInstructions(text="Be terse.")))

    assert asyncio.run(provider.get_active_instructions()) == "Be terse."


def test_instructions_provider_falls_back_to_default() -> None:
    missing = InstructionsProvider(_InstructionsStore(None))
    blank = InstructionsProvider(_InstructionsStore(SystemInstructions(text="   ")))
    broken = InstructionsProvider(_InstructionsStore(error=PersistenceError("offline")))
    custom = InstructionsProvider(_InstructionsStore(None), default="Custom default.")

    assert asyncio.run(missing.get_active_instructions()) == DEFAULT_SYSTEM_INSTRUCTIONS
    assert asyncio.run(blank.get_active_instructions()) == DEFAULT_SYSTEM_INSTRUCTIONS
    assert asyncio.run(broken.get_active_instructions()) == DEFAULT_SYSTEM_INSTRUCTIONS
    assert asyncio.run(custom.get_active_instructions()) == "Custom default."
