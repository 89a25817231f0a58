from __future__ import annotations

from typing import Any, Dict, List

from .base import ChatBackendClient


class GroqChatClient(ChatBackendClient):
    """Client for OpenAI-compatible `/chat/completions` endpoints (Groq by default)."""

    backend_name = "groq"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        max_attempts: int = 2,
        base_url: str = "https://api.groq.com/openai/v1",
    ) -> None:
        super().__init__(
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            max_attempts=max_attempts,
        )
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_output_tokens: int | None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "stream": False,
        }
        if max_output_tokens is not None:
            payload["max_tokens"] = int(max_output_tokens)
        return payload

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            raise RuntimeError("Chat completion returned no choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        finish_reason = choices[0].get("finish_reason")
        if finish_reason:
            raise RuntimeError(f"Chat completion empty response (finish_reason={finish_reason})")
        raise RuntimeError("Chat completion empty response")
