from __future__ import annotations

from ..config import Settings
from .base import ChatBackendClient
from .gemini_client import GeminiClient
from .groq_client import GroqChatClient
from .ollama_chat_client import OllamaChatClient


def build_llm_client(settings: Settings) -> ChatBackendClient:
    common = {
        "timeout_seconds": settings.llm_timeout_seconds,
        "temperature": settings.llm_temperature,
        "max_output_tokens": settings.llm_max_output_tokens,
        "max_attempts": settings.llm_max_attempts,
    }
    backend = settings.llm_backend
    if backend == "groq":
        return GroqChatClient(
            api_key=settings.groq_api_key,
            model=settings.groq_model,
            base_url=settings.groq_base_url,
            **common,
        )
    if backend == "gemini":
        return GeminiClient(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            **common,
        )
    if backend == "ollama":
        return OllamaChatClient(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            **common,
        )
    raise ValueError(f"Unsupported LLM_BACKEND: {backend}")
