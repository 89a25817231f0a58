from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


load_dotenv()

DEFAULT_SYSTEM_INSTRUCTIONS = "You are a helpful Discord bot assistant."
LLM_BACKENDS = ("groq", "gemini", "ollama")
MEMORY_BACKENDS = ("sqlite", "postgres")


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_message_content_intent: bool

    llm_backend: str
    groq_api_key: str
    groq_base_url: str
    groq_model: str
    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    ollama_base_url: str
    ollama_model: str
    llm_timeout_seconds: int
    llm_temperature: float
    llm_max_output_tokens: int
    llm_max_attempts: int

    memory_backend: str
    sqlite_path: Path
    postgres_dsn: str

    default_system_instructions: str
    serialize_channel_turns: bool

    admin_host: str
    admin_port: int
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN") or ""),
            discord_message_content_intent=_env_bool("DISCORD_MESSAGE_CONTENT_INTENT", True),
            llm_backend=_env_str("LLM_BACKEND", "groq").lower(),
            groq_api_key=_env_str("GROQ_API_KEY", ""),
            groq_base_url=_env_str("GROQ_BASE_URL", "https://api.groq.com/openai/v1"),
            groq_model=_env_str("GROQ_MODEL", "llama-3.1-8b-instant"),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=_env_str("GEMINI_MODEL", "gemini-2.5-flash"),
            ollama_base_url=_env_str("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
            ollama_model=_env_str("OLLAMA_MODEL", "llama3.1:8b"),
            llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 60),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.7),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 400),
            llm_max_attempts=_env_int("LLM_MAX_ATTEMPTS", 2),
            memory_backend=_env_str("MEMORY_BACKEND", "sqlite").lower(),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/copilot.db")).expanduser(),
            postgres_dsn=_env_str("MEMORY_POSTGRES_DSN", ""),
            default_system_instructions=_env_str("DEFAULT_SYSTEM_INSTRUCTIONS", DEFAULT_SYSTEM_INSTRUCTIONS),
            serialize_channel_turns=_env_bool("SERIALIZE_CHANNEL_TURNS", True),
            admin_host=_env_str("ADMIN_HOST", "127.0.0.1"),
            admin_port=_env_int("ADMIN_PORT", 8080),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required")
        self.validate_storage()

        if self.llm_backend not in LLM_BACKENDS:
            raise ValueError(f"LLM_BACKEND must be one of {', '.join(LLM_BACKENDS)}")
        if self.llm_backend == "groq" and not self.groq_api_key:
            raise ValueError("GROQ_API_KEY is required when LLM_BACKEND=groq")
        if self.llm_backend == "gemini" and not self.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required when LLM_BACKEND=gemini")
        if self.llm_backend == "ollama" and not self.ollama_model:
            raise ValueError("OLLAMA_MODEL cannot be empty when LLM_BACKEND=ollama")

        if self.llm_timeout_seconds < 5:
            raise ValueError("LLM_TIMEOUT_SECONDS must be >= 5")
        if not 0.0 < self.llm_temperature <= 1.5:
            raise ValueError("LLM_TEMPERATURE must be in (0, 1.5]")
        if self.llm_max_output_tokens < 16:
            raise ValueError("LLM_MAX_OUTPUT_TOKENS must be >= 16")
        if not 1 <= self.llm_max_attempts <= 3:
            raise ValueError("LLM_MAX_ATTEMPTS must be in [1, 3]")

    def validate_storage(self) -> None:
        if self.memory_backend not in MEMORY_BACKENDS:
            raise ValueError("MEMORY_BACKEND must be 'sqlite' or 'postgres'")
        if self.memory_backend == "postgres" and not self.postgres_dsn:
            raise ValueError("MEMORY_POSTGRES_DSN is required when MEMORY_BACKEND=postgres")
        if not 1 <= self.admin_port <= 65535:
            raise ValueError("ADMIN_PORT must be in [1, 65535]")
