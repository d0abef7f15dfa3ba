from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from fakes import InMemoryChatStore, StubProvider, failing_provider
from support_bot.chat_store import SQLiteChatStore
from support_bot.context_store import InMemoryContextStore
from support_bot.errors import CacheUnavailable
from support_bot.orchestrator import (
    EMPTY_REPLY_APOLOGY,
    UNAVAILABLE_REPLY,
    ConversationOrchestrator,
    resolve_conversation_id,
)
from support_bot.router import CompletionRouter, RouterConfig
from support_bot.types import Turn


class BrokenContextStore(InMemoryContextStore):
    async def append(self, conversation_id: str, turn: Turn) -> None:
        raise CacheUnavailable("redis down")


def _orchestrator(
    *providers: StubProvider,
    chat_store: InMemoryChatStore | None = None,
    context_store: InMemoryContextStore | None = None,
    prompt_prefix: str | None = None,
) -> tuple[ConversationOrchestrator, InMemoryChatStore, InMemoryContextStore]:
    chat_store = chat_store or InMemoryChatStore()
    context_store = context_store or InMemoryContextStore(
        max_entries=3, ttl_seconds=300
    )
    router = CompletionRouter(
        RouterConfig(
            providers=tuple(
                (f"provider-{index}", provider)
                for index, provider in enumerate(providers)
            )
        )
    )
    orchestrator = ConversationOrchestrator(
        context_store=context_store,
        router=router,
        chat_store=chat_store,
        system_prompt="be helpful",
        prompt_prefix=prompt_prefix,
    )
    return orchestrator, chat_store, context_store


@pytest.mark.anyio
async def test_new_conversation_round_trip() -> None:
    orchestrator, chat_store, context_store = _orchestrator(StubProvider("Hello!"))

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.ok
    assert result.reply_text == "Hello!"
    assert uuid.UUID(result.conversation_id)
    assert result.conversation_id in chat_store.conversations
    assert await context_store.read(result.conversation_id) == (
        Turn(sender="user", text="Hi"),
        Turn(sender="ai", text="Hello!"),
    )
    assert await orchestrator.get_history(result.conversation_id) == (
        Turn(sender="user", text="Hi"),
        Turn(sender="ai", text="Hello!"),
    )


@pytest.mark.anyio
async def test_each_new_conversation_gets_a_fresh_id() -> None:
    orchestrator, _, _ = _orchestrator(StubProvider("ok"))

    first = await orchestrator.handle_turn(None, "Hi")
    second = await orchestrator.handle_turn("undefined", "Hi")
    third = await orchestrator.handle_turn("", "Hi")

    ids = {first.conversation_id, second.conversation_id, third.conversation_id}
    assert len(ids) == 3


@pytest.mark.anyio
async def test_existing_id_is_reused_and_context_is_forwarded() -> None:
    provider = StubProvider("Sure.")
    orchestrator, chat_store, _ = _orchestrator(provider)

    first = await orchestrator.handle_turn(None, "Hi")
    second = await orchestrator.handle_turn(first.conversation_id, "Where is my order?")

    assert second.conversation_id == first.conversation_id
    assert provider.renderings[1]["context"] == (
        Turn(sender="user", text="Hi"),
        Turn(sender="ai", text="Sure."),
    )
    assert len(await chat_store.list_turns(first.conversation_id)) == 4


@pytest.mark.anyio
async def test_prompt_prefix_is_sent_but_raw_text_is_stored() -> None:
    provider = StubProvider("Hello!")
    orchestrator, chat_store, context_store = _orchestrator(
        provider, prompt_prefix="Reply only in English"
    )

    result = await orchestrator.handle_turn(None, "Hola")

    assert provider.renderings[0]["user_text"] == "Reply only in English Hola"
    assert provider.renderings[0]["system_prompt"] == "be helpful"
    stored = await chat_store.list_turns(result.conversation_id)
    assert stored[0] == Turn(sender="user", text="Hola")
    cached = await context_store.read(result.conversation_id)
    assert cached[0] == Turn(sender="user", text="Hola")


@pytest.mark.anyio
async def test_total_provider_failure_returns_fallback_without_persisting() -> None:
    orchestrator, chat_store, context_store = _orchestrator(
        StubProvider("Hello!"),
    )
    first = await orchestrator.handle_turn(None, "Hi")
    history_before = await chat_store.list_turns(first.conversation_id)

    failing, _, _ = _orchestrator(
        failing_provider(),
        failing_provider(),
        chat_store=chat_store,
        context_store=context_store,
    )
    result = await failing.handle_turn(first.conversation_id, "Still there?")

    assert result.status == "provider_unavailable"
    assert result.reply_text == UNAVAILABLE_REPLY
    assert result.conversation_id == first.conversation_id
    assert await chat_store.list_turns(first.conversation_id) == history_before
    assert len(await context_store.read(first.conversation_id)) == 2


@pytest.mark.anyio
async def test_no_providers_configured_still_returns_id() -> None:
    orchestrator, chat_store, _ = _orchestrator()

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.status == "provider_unavailable"
    assert uuid.UUID(result.conversation_id)
    assert chat_store.saved == []


@pytest.mark.anyio
async def test_blank_reply_persists_apology() -> None:
    orchestrator, chat_store, _ = _orchestrator(StubProvider(""), StubProvider("   "))

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.ok
    assert result.reply_text == EMPTY_REPLY_APOLOGY
    assert await chat_store.list_turns(result.conversation_id) == (
        Turn(sender="user", text="Hi"),
        Turn(sender="ai", text=EMPTY_REPLY_APOLOGY),
    )


@pytest.mark.anyio
async def test_create_failure_is_reported_with_usable_id() -> None:
    orchestrator, _, context_store = _orchestrator(
        StubProvider("Hello!"), chat_store=InMemoryChatStore(fail_create=True)
    )

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.status == "persistence_failed"
    assert result.reply_text == UNAVAILABLE_REPLY
    assert uuid.UUID(result.conversation_id)
    assert await context_store.read(result.conversation_id) == ()


@pytest.mark.anyio
async def test_save_failure_skips_cache_write() -> None:
    orchestrator, _, context_store = _orchestrator(
        StubProvider("Hello!"), chat_store=InMemoryChatStore(fail_save_on_call=2)
    )

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.status == "persistence_failed"
    assert await context_store.read(result.conversation_id) == ()


@pytest.mark.anyio
async def test_cache_append_failure_does_not_lose_reply() -> None:
    orchestrator, chat_store, _ = _orchestrator(
        StubProvider("Hello!"), context_store=BrokenContextStore()
    )

    result = await orchestrator.handle_turn(None, "Hi")

    assert result.ok
    assert result.reply_text == "Hello!"
    assert len(await chat_store.list_turns(result.conversation_id)) == 2


@pytest.mark.anyio
async def test_reset_context_clears_cache_only() -> None:
    orchestrator, chat_store, context_store = _orchestrator(StubProvider("Hello!"))
    result = await orchestrator.handle_turn(None, "Hi")

    await orchestrator.reset_context(result.conversation_id)

    assert await context_store.read(result.conversation_id) == ()
    assert len(await chat_store.list_turns(result.conversation_id)) == 2


def test_resolve_conversation_id_keeps_valid_uuid() -> None:
    existing = str(uuid.uuid4())

    assert resolve_conversation_id(existing) == existing


@pytest.mark.parametrize("value", [None, "", "   ", "undefined", "null", "1234"])
def test_resolve_conversation_id_mints_for_invalid_values(value: str | None) -> None:
    resolved = resolve_conversation_id(value)

    assert resolved != value
    assert uuid.UUID(resolved).version == 4



@pytest.mark.anyio
async def test_unstorable_text_is_reported_as_persistence_failure(
    tmp_path: Path,
) -> None:
    chat_store = SQLiteChatStore(tmp_path / "chat.db")
    await chat_store.init()
    context_store = InMemoryContextStore()
    router = CompletionRouter(RouterConfig(providers=(("p0", StubProvider("Hello!")),)))
    orchestrator = ConversationOrchestrator(
        context_store=context_store,
        router=router,
        chat_store=chat_store,
        system_prompt="be helpful",
    )

    result = await orchestrator.handle_turn(None, "Hi \ud800")

    assert result.status == "persistence_failed"
    assert result.reply_text == UNAVAILABLE_REPLY
    assert uuid.UUID(result.conversation_id)
    assert await context_store.read(result.conversation_id) == ()
    assert await chat_store.list_turns(result.conversation_id) == ()
    await chat_store.close()
