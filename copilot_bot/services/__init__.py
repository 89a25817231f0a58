from .base import ChatBackendClient
from .factory import build_llm_client
from .gemini_client import GeminiClient
from .groq_client import GroqChatClient
from .ollama_chat_client import OllamaChatClient

__all__ = ["ChatBackendClient", "GeminiClient", "GroqChatClient", "OllamaChatClient", "build_llm_client"]
