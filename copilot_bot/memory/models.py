from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

WINDOW_CAPACITY = 10
ROLES = ("user", "assistant")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass(frozen=True, slots=True)
class MessageEntry:
    role: str
    content: str
    timestamp: datetime

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unsupported message role: {self.role!r}")

    def to_dict(self) -> dict[str, str]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageEntry":
        return cls(
            role=str(data.get("role", "")).strip().lower(),
            content=str(data.get("content", "")),
            timestamp=parse_timestamp(data.get("timestamp")) or utcnow(),
        )


class RollingWindow:
    """Fixed-capacity message buffer; pushing past capacity evicts the oldest entry."""

    def __init__(self, entries: Iterable[MessageEntry] = (), capacity: int = WINDOW_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[MessageEntry] = deque(entries, maxlen=capacity)

    def push(self, entry: MessageEntry) -> None:
        self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MessageEntry]:
        return iter(self._entries)

    def to_list(self) -> list[MessageEntry]:
        return list(self._entries)


@dataclass(slots=True)
class ConversationMemory:
    channel_id: str
    summary: str = ""
    recent_messages: list[MessageEntry] = field(default_factory=list)
    message_count: int = 0
    last_message_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def empty(cls, channel_id: str) -> "ConversationMemory":
        return cls(channel_id=channel_id)

    @property
    def is_empty(self) -> bool:
        return not self.summary and not self.recent_messages

    def recent_messages_json(self) -> str:
        return json.dumps([entry.to_dict() for entry in self.recent_messages], ensure_ascii=False)

    @staticmethod
    def parse_recent_messages(raw: object) -> list[MessageEntry]:
        if raw is None or raw == "":
            return []
        payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        if not isinstance(payload, list):
            return []
        return [MessageEntry.from_dict(item) for item in payload if isinstance(item, dict)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "summary": self.summary,
            "recent_messages": [entry.to_dict() for entry in self.recent_messages],
            "message_count": self.message_count,
            "last_message_at": format_timestamp(self.last_message_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(slots=True)
class SystemInstructions:
    text: str
    updated_at: datetime | None = None
    is_active: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "instructions": self.text,
            "is_active": self.is_active,
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(slots=True)
class ChannelAllowlistEntry:
    channel_id: str
    channel_name: str | None = None
    server_id: str | None = None
    server_name: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "channel_name": self.channel_name,
            "server_id": self.server_id,
            "server_name": self.server_name,
            "is_active": self.is_active,
            "created_at": format_timestamp(self.created_at),
        }
