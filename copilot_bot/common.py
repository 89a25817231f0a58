from __future__ import annotations

import re

DISCORD_MESSAGE_LIMIT = 2000
SAFE_CHUNK_LIMIT = 1900

_ANY_USER_MENTION = re.compile(r"<@!?\d+>")


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    if limit <= 3:
        return text[:limit]
    return (text[: limit - 3].rstrip() + "...").strip()


def chunk_text(text: str, limit: int = SAFE_CHUNK_LIMIT) -> list[str]:
    """Split text into consecutive pieces of exactly `limit` characters, the last one shorter.

    Joining the result in order gives back the original text exactly.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    if len(text) <= limit:
        return [text]
    return [text[i : i + limit] for i in range(0, len(text), limit)]


def strip_bot_mention(text: str, bot_user_id: int | None) -> str:
    if bot_user_id is None:
        return _ANY_USER_MENTION.sub("", text).strip()
    pattern = re.compile(rf"<@!?{bot_user_id}>")
    return pattern.sub("", text).strip()
