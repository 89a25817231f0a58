from __future__ import annotations

import logging
from typing import Any, Dict, List

from .errors import GenerationError

logger = logging.getLogger("copilot_bot")

FALLBACK_RESPONSE = "I'm having trouble responding right now. Please try again."


def build_prompt_messages(
    system_instructions: str,
    conversation_context: str,
    user_message: str,
) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system_instructions}]
    if conversation_context:
        messages.append(
            {
                "role": "assistant",
                "content": f"Conversation summary:\n{conversation_context}",
            }
        )
    messages.append({"role": "user", "content": user_message})
    return messages


class ResponseGenerator:
    """Builds the prompt and asks the chat backend for a reply.

    Sampling temperature and the output cap are fixed per process. The backend
    client owns the retry budget; whatever still fails surfaces as
    GenerationError so the caller can fall back.
    """

    def __init__(
        self,
        llm: Any,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> None:
        self.llm = llm
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def generate(
        self,
        system_instructions: str,
        conversation_context: str,
        user_message: str,
    ) -> str:
        messages = build_prompt_messages(system_instructions, conversation_context, user_message)
        try:
            reply = await self.llm.chat(
                messages,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            )
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"Backend call failed: {exc}") from exc

        reply = (reply or "").strip()
        if not reply:
            raise GenerationError("Backend returned an empty reply")
        return reply
