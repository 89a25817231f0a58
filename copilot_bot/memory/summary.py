from __future__ import annotations

from typing import Iterable

from .models import MessageEntry

SUMMARY_LABEL = "Recent conversation about: "
MIN_TOKEN_LENGTH = 6
MAX_SUMMARY_TOKENS = 20


class SummaryGenerator:
    """Cheap lexical digest: the first long words of the visible window, in order."""

    def __init__(
        self,
        label: str = SUMMARY_LABEL,
        min_token_length: int = MIN_TOKEN_LENGTH,
        max_tokens: int = MAX_SUMMARY_TOKENS,
    ) -> None:
        self.label = label
        self.min_token_length = min_token_length
        self.max_tokens = max_tokens

    def summarize(self, messages: Iterable[MessageEntry]) -> str:
        contents = [entry.content for entry in messages]
        if not contents:
            return ""
        topics: list[str] = []
        for token in " ".join(contents).split():
            if len(token) < self.min_token_length:
                continue
            topics.append(token)
            if len(topics) >= self.max_tokens:
                break
        return f"{self.label}{' '.join(topics)}"
