from __future__ import annotations

import os
from dataclasses import dataclass

from support_bot.chat_prompt import DEFAULT_CHAT_SYSTEM_PROMPT
from support_bot.completion_clients import (
    DEFAULT_GEMINI_BASE_URL,
    DEFAULT_GEMINI_MODEL,
    DEFAULT_GROQ_BASE_URL,
    DEFAULT_GROQ_MODEL,
    DEFAULT_OPENROUTER_BASE_URL,
    DEFAULT_OPENROUTER_MODEL,
)
from support_bot.context_store import (
    DEFAULT_MAX_MESSAGES,
    DEFAULT_TTL_SECONDS,
    TrimMode,
)

KNOWN_PROVIDERS = ("gemini", "groq", "openrouter")
DEFAULT_PROVIDER_ORDER = KNOWN_PROVIDERS
DEFAULT_PROMPT_PREFIX = "Reply only in English"


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL
    groq_api_key: str | None = None
    groq_model: str = DEFAULT_GROQ_MODEL
    groq_base_url: str = DEFAULT_GROQ_BASE_URL
    groq_temperature: float = 0.3
    openrouter_api_key: str | None = None
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    provider_order: tuple[str, ...] = DEFAULT_PROVIDER_ORDER
    provider_timeout_seconds: float = 30.0
    provider_max_output_tokens: int = 512
    chat_system_prompt: str = DEFAULT_CHAT_SYSTEM_PROMPT
    chat_prompt_prefix: str | None = DEFAULT_PROMPT_PREFIX
    context_max_messages: int = DEFAULT_MAX_MESSAGES
    context_trim_mode: TrimMode = "messages"
    context_ttl_seconds: int = DEFAULT_TTL_SECONDS
    redis_url: str | None = None
    database_path: str = "support_bot.db"
    cors_allow_origins: tuple[str, ...] = ("*",)
    max_message_chars: int = 2000
    host: str = "127.0.0.1"
    port: int = 3000

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            gemini_api_key=_optional(os.getenv("GEMINI_API_KEY")),
            gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL),
            groq_api_key=_optional(os.getenv("GROQ_API_KEY")),
            groq_model=os.getenv("GROQ_MODEL", DEFAULT_GROQ_MODEL),
            groq_base_url=os.getenv("GROQ_BASE_URL", DEFAULT_GROQ_BASE_URL),
            groq_temperature=float(os.getenv("GROQ_TEMPERATURE", "0.3")),
            openrouter_api_key=_optional(os.getenv("OPENROUTER_API_KEY")),
            openrouter_model=os.getenv("OPENROUTER_MODEL", DEFAULT_OPENROUTER_MODEL),
            openrouter_base_url=os.getenv(
                "OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL
            ),
            provider_order=_parse_provider_order(os.getenv("CHAT_PROVIDER_ORDER")),
            provider_timeout_seconds=float(
                os.getenv("PROVIDER_TIMEOUT_SECONDS", "30")
            ),
            provider_max_output_tokens=int(
                os.getenv("PROVIDER_MAX_OUTPUT_TOKENS", "512")
            ),
            chat_system_prompt=_chat_system_prompt_from_env(
                os.getenv("CHAT_SYSTEM_PROMPT")
            ),
            chat_prompt_prefix=_prompt_prefix_from_env(os.getenv("CHAT_PROMPT_PREFIX")),
            context_max_messages=_positive_int(
                "CONTEXT_MAX_MESSAGES",
                os.getenv("CONTEXT_MAX_MESSAGES", str(DEFAULT_MAX_MESSAGES)),
            ),
            context_trim_mode=_parse_trim_mode(os.getenv("CONTEXT_TRIM_MODE")),
            context_ttl_seconds=_positive_int(
                "CONTEXT_TTL_SECONDS",
                os.getenv("CONTEXT_TTL_SECONDS", str(DEFAULT_TTL_SECONDS)),
            ),
            redis_url=_optional(os.getenv("REDIS_URL")),
            database_path=os.getenv("DATABASE_PATH", "support_bot.db"),
            cors_allow_origins=_split_csv_ordered(os.getenv("CORS_ALLOW_ORIGINS"))
            or ("*",),
            max_message_chars=int(os.getenv("MAX_MESSAGE_CHARS", "2000")),
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "3000")),
        )

    def api_key_for(self, provider: str) -> str | None:
        return {
            "gemini": self.gemini_api_key,
            "groq": self.groq_api_key,
            "openrouter": self.openrouter_api_key,
        }.get(provider)

    @property
    def enabled_providers(self) -> tuple[str, ...]:
        return tuple(name for name in self.provider_order if self.api_key_for(name))


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _split_csv_ordered(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()

    seen: set[str] = set()
    ordered: list[str] = []
    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item or item in seen:
            continue
        ordered.append(item)
        seen.add(item)

    return tuple(ordered)


def _parse_provider_order(value: str | None) -> tuple[str, ...]:
    names = tuple(item.lower() for item in _split_csv_ordered(value))
    if not names:
        return DEFAULT_PROVIDER_ORDER

    unknown = [name for name in names if name not in KNOWN_PROVIDERS]
    if unknown:
        raise RuntimeError(
            "Invalid CHAT_PROVIDER_ORDER. Unknown providers: "
            f"{', '.join(unknown)}. Expected any of: {', '.join(KNOWN_PROVIDERS)}."
        )
    return tuple(dict.fromkeys(names))


def _parse_trim_mode(value: str | None) -> TrimMode:
    if value is None:
        return "messages"

    normalized = value.strip().lower()
    if normalized == "messages":
        return "messages"
    if normalized == "pairs":
        return "pairs"

    raise RuntimeError("Invalid CONTEXT_TRIM_MODE. Expected 'messages' or 'pairs'.")


def _positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid {name}. Expected an integer.") from exc
    if parsed < 1:
        raise RuntimeError(f"Invalid {name}. Expected a positive integer.")
    return parsed


def _chat_system_prompt_from_env(value: str | None) -> str:
    if value is None:
        return DEFAULT_CHAT_SYSTEM_PROMPT
    stripped = value.strip()
    if not stripped:
        return DEFAULT_CHAT_SYSTEM_PROMPT
    return stripped


def _prompt_prefix_from_env(value: str | None) -> str | None:
    if value is None:
        return DEFAULT_PROMPT_PREFIX
    return value.strip() or None
