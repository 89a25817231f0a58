from __future__ import annotations

import re
from typing import Any, Dict, List

from .base import ChatBackendClient


class OllamaChatClient(ChatBackendClient):
    backend_name = "ollama"

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        max_attempts: int = 2,
    ) -> None:
        super().__init__(
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            max_attempts=max_attempts,
        )
        self.base_url = (base_url or "http://127.0.0.1:11434").strip().rstrip("/")

    def _endpoint(self) -> str:
        return f"{self.base_url}/api/chat"

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_output_tokens: int | None,
    ) -> Dict[str, Any]:
        options: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens is not None:
            options["num_predict"] = int(max_output_tokens)
        return {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "think": False,
            "options": options,
        }

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        raw = ""
        message = data.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            raw = message["content"]
        elif isinstance(data.get("response"), str):
            raw = data["response"]
        # Some reasoning-capable models may emit hidden-thought tags.
        cleaned = re.sub(r"<think>.*?</think>\s*", "", raw, flags=re.IGNORECASE | re.DOTALL).strip()
        if not cleaned:
            raise RuntimeError("Ollama returned empty message content")
        return cleaned
