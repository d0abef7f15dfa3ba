from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from support_bot.chat_api import ChatHandler, build_router
from support_bot.chat_store import SQLiteChatStore
from support_bot.completion_clients import (
    ChatCompletionsClient,
    CompletionProvider,
    GeminiClient,
    attempt_timeout,
)
from support_bot.config import Settings
from support_bot.context_store import (
    ContextStore,
    InMemoryContextStore,
    RedisContextStore,
)
from support_bot.orchestrator import ConversationOrchestrator
from support_bot.router import CompletionRouter, RouterConfig

logger = logging.getLogger(__name__)


def build_provider(
    name: str, settings: Settings, http_client: httpx.AsyncClient
) -> CompletionProvider:
    api_key = settings.api_key_for(name) or ""
    timeout_seconds = attempt_timeout(settings.provider_timeout_seconds)
    if name == "gemini":
        return GeminiClient(
            api_key=api_key,
            http_client=http_client,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout_seconds=timeout_seconds,
            max_output_tokens=settings.provider_max_output_tokens,
        )
    if name == "groq":
        return ChatCompletionsClient(
            api_key=api_key,
            model=settings.groq_model,
            http_client=http_client,
            base_url=settings.groq_base_url,
            timeout_seconds=timeout_seconds,
            max_output_tokens=settings.provider_max_output_tokens,
            temperature=settings.groq_temperature,
        )
    if name == "openrouter":
        return ChatCompletionsClient(
            api_key=api_key,
            model=settings.openrouter_model,
            http_client=http_client,
            base_url=settings.openrouter_base_url,
            timeout_seconds=timeout_seconds,
            max_output_tokens=settings.provider_max_output_tokens,
            extra_headers={"X-Title": "support-bot"},
        )
    raise ValueError(f"Unknown provider: {name!r}")


def build_router_config(
    settings: Settings, http_client: httpx.AsyncClient
) -> RouterConfig:
    providers = tuple(
        (name, build_provider(name, settings, http_client))
        for name in settings.enabled_providers
    )
    return RouterConfig(
        providers=providers,
        timeout_seconds=settings.provider_timeout_seconds,
    )


def build_context_store(settings: Settings, redis: Redis | None) -> ContextStore:
    if redis is None:
        return InMemoryContextStore(
            max_entries=settings.context_max_messages,
            ttl_seconds=settings.context_ttl_seconds,
            trim_mode=settings.context_trim_mode,
        )
    return RedisContextStore(
        redis=redis,
        max_entries=settings.context_max_messages,
        ttl_seconds=settings.context_ttl_seconds,
        trim_mode=settings.context_trim_mode,
    )


def create_app(settings: Settings) -> FastAPI:
    http_client = httpx.AsyncClient()
    redis: Redis | None = None
    if settings.redis_url:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
    chat_store = SQLiteChatStore(settings.database_path)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await chat_store.init()
        yield
        await http_client.aclose()
        if redis is not None:
            await redis.aclose()
        await chat_store.close()

    app = FastAPI(title="support-bot", version="1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    router_config = build_router_config(settings, http_client)
    if router_config.providers:
        logger.info(
            "providers_configured order=%s", ",".join(router_config.provider_names)
        )
    else:
        logger.warning("no_providers_configured fallback_reply_only=true")

    orchestrator = ConversationOrchestrator(
        context_store=build_context_store(settings, redis),
        router=CompletionRouter(router_config),
        chat_store=chat_store,
        system_prompt=settings.chat_system_prompt,
        prompt_prefix=settings.chat_prompt_prefix,
    )
    handler = ChatHandler(settings=settings, orchestrator=orchestrator)

    app.include_router(build_router(handler))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    return app


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    settings = Settings.from_env()
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
