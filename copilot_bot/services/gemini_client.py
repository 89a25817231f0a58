from __future__ import annotations

from typing import Any, Dict, List

from .base import ChatBackendClient


class GeminiClient(ChatBackendClient):
    backend_name = "gemini"

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        max_attempts: int = 2,
        base_url: str = "https://generativelanguage.googleapis.com",
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
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    @staticmethod
    def _map_messages(messages: List[Dict[str, str]]) -> Dict[str, Any]:
        system_lines: List[str] = []
        contents: List[Dict[str, Any]] = []

        for message in messages:
            role = message["role"]
            content = message["content"]
            if role == "system":
                system_lines.append(content)
                continue
            mapped_role = "model" if role == "assistant" else "user"
            contents.append({"role": mapped_role, "parts": [{"text": content}]})

        payload: Dict[str, Any] = {"contents": contents}
        if system_lines:
            payload["systemInstruction"] = {
                "parts": [{"text": "\n\n".join(system_lines)}],
            }
        return payload

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_output_tokens: int | None,
    ) -> Dict[str, Any]:
        payload = self._map_messages(messages)
        generation_config: Dict[str, Any] = {"temperature": temperature}
        if max_output_tokens is not None:
            generation_config["maxOutputTokens"] = int(max_output_tokens)
        payload["generationConfig"] = generation_config
        return payload

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            prompt_feedback = data.get("promptFeedback") or {}
            block_reason = prompt_feedback.get("blockReason")
            if block_reason:
                raise RuntimeError(f"Gemini blocked response: {block_reason}")
            raise RuntimeError("Gemini returned no candidates")

        first = candidates[0]
        content = first.get("content") or {}
        parts = content.get("parts") or []
        chunks: List[str] = []

        for part in parts:
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                chunks.append(text.strip())

        joined = "\n".join(chunks).strip()
        if joined:
            return joined

        finish_reason = first.get("finishReason")
        if finish_reason:
            raise RuntimeError(f"Gemini empty response (finishReason={finish_reason})")
        raise RuntimeError("Gemini empty response")
