from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, List

import aiohttp

logger = logging.getLogger("copilot_bot")

RETRIABLE_STATUSES = {408, 409, 429, 500, 502, 503, 504}


class ChatBackendClient:
    """Shared aiohttp session handling and bounded retry loop for chat backends.

    Subclasses describe the wire format: `_endpoint`, `_build_payload` and
    `_extract_text`. `chat(messages)` takes OpenAI-style role/content dicts.
    """

    backend_name = "base"

    def __init__(
        self,
        *,
        model: str,
        timeout_seconds: int,
        temperature: float,
        max_output_tokens: int,
        max_attempts: int = 2,
    ) -> None:
        self.model = (model or "").strip()
        if not self.model:
            raise ValueError(f"{self.backend_name} model cannot be empty")
        self.timeout = aiohttp.ClientTimeout(total=max(5, int(timeout_seconds)))
        self.temperature = float(temperature)
        self.max_output_tokens: int | None = int(max_output_tokens) if int(max_output_tokens) > 0 else None
        self.max_attempts = max(1, int(max_attempts))
        self._session: aiohttp.ClientSession | None = None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {}

    def _build_payload(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_output_tokens: int | None,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        raise NotImplementedError

    @staticmethod
    def _sanitize_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
        mapped: List[Dict[str, str]] = []
        for msg in messages:
            role = str(msg.get("role", "")).strip().lower() or "user"
            if role not in {"system", "user", "assistant"}:
                role = "user"
            content = str(msg.get("content", ""))
            if not content.strip():
                continue
            mapped.append({"role": role, "content": content})
        return mapped

    async def _request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        attempts = self.max_attempts
        url = self._endpoint()
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with self._session.post(url, json=payload, headers=self._headers()) as response:
                    text = await response.text()
                    if response.status == 200:
                        parsed = json.loads(text)
                        if isinstance(parsed, dict):
                            return parsed
                        raise RuntimeError(f"{self.backend_name} returned non-object JSON response")

                    if response.status not in RETRIABLE_STATUSES:
                        raise RuntimeError(f"{self.backend_name} error {response.status}: {text[:500]}")
                    last_error = RuntimeError(f"{self.backend_name} retriable error {response.status}: {text[:500]}")
            except asyncio.CancelledError:
                raise
            except RuntimeError:
                raise
            except Exception as exc:
                last_error = exc

            if attempt < attempts:
                logger.warning("%s request attempt %s/%s failed: %s", self.backend_name, attempt, attempts, last_error)
                await asyncio.sleep(min(4.0, 0.35 * attempt + random.random() * 0.2))

        if last_error is not None:
            raise RuntimeError(f"{self.backend_name} request failed after retries: {last_error}")
        raise RuntimeError(f"{self.backend_name} request failed without explicit error")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        mapped = self._sanitize_messages(messages)
        if not mapped:
            raise RuntimeError("No messages to send")
        selected_tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        payload = self._build_payload(
            mapped,
            self.temperature if temperature is None else float(temperature),
            selected_tokens if selected_tokens and int(selected_tokens) > 0 else None,
        )
        data = await self._request(payload)
        return self._extract_text(data)
