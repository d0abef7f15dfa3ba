from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Literal

from support_bot.chat_prompt import apply_prompt_prefix
from support_bot.chat_store import ChatStore
from support_bot.context_store import ContextStore
from support_bot.errors import CacheUnavailable, NoProviderAvailable, PersistenceError
from support_bot.parsing import new_conversation_id, normalize_conversation_id
from support_bot.router import CompletionRouter
from support_bot.types import Turn

logger = logging.getLogger(__name__)

UNAVAILABLE_REPLY = "Support agent unavailable. Please try again later."
EMPTY_REPLY_APOLOGY = "I'm unable to answer that right now. Please contact support."

TurnStatus = Literal["ok", "provider_unavailable", "persistence_failed"]


@dataclass(frozen=True)
class TurnResult:
    reply_text: str
    conversation_id: str
    status: TurnStatus = "ok"

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class ConversationOrchestrator:
    def __init__(
        self,
        *,
        context_store: ContextStore,
        router: CompletionRouter,
        chat_store: ChatStore,
        system_prompt: str,
        prompt_prefix: str | None = None,
    ) -> None:
        self._context_store = context_store
        self._router = router
        self._chat_store = chat_store
        self._system_prompt = system_prompt
        self._prompt_prefix = prompt_prefix

    async def handle_turn(
        self, conversation_id: str | None, user_text: str
    ) -> TurnResult:
        resolved_id = resolve_conversation_id(conversation_id)

        try:
            await self._chat_store.create_conversation_if_absent(resolved_id)
        except PersistenceError:
            logger.exception(
                "conversation_create_failed conversation_id=%s", resolved_id
            )
            return TurnResult(UNAVAILABLE_REPLY, resolved_id, "persistence_failed")

        context = await self._context_store.read(resolved_id)
        prompt = apply_prompt_prefix(user_text, self._prompt_prefix)

        try:
            reply = await self._router.generate(self._system_prompt, context, prompt)
        except NoProviderAvailable as exc:
            logger.error(
                "no_provider_available conversation_id=%s detail=%s", resolved_id, exc
            )
            return TurnResult(UNAVAILABLE_REPLY, resolved_id, "provider_unavailable")
        except Exception:
            logger.exception("unexpected_router_error conversation_id=%s", resolved_id)
            return TurnResult(UNAVAILABLE_REPLY, resolved_id, "provider_unavailable")

        if not reply or not reply.strip():
            reply = EMPTY_REPLY_APOLOGY

        user_turn = Turn(sender="user", text=user_text)
        ai_turn = Turn(sender="ai", text=reply)

        try:
            for turn in (user_turn, ai_turn):
                await self._chat_store.save_turn(
                    str(uuid.uuid4()), resolved_id, turn.sender, turn.text
                )
        except PersistenceError:
            logger.exception("turn_save_failed conversation_id=%s", resolved_id)
            return TurnResult(UNAVAILABLE_REPLY, resolved_id, "persistence_failed")

        try:
            for turn in (user_turn, ai_turn):
                await self._context_store.append(resolved_id, turn)
        except CacheUnavailable as exc:
            logger.warning(
                "context_append_failed conversation_id=%s detail=%s", resolved_id, exc
            )

        return TurnResult(reply, resolved_id)

    async def get_history(self, conversation_id: str) -> tuple[Turn, ...]:
        return await self._chat_store.list_turns(conversation_id)

    async def reset_context(self, conversation_id: str) -> None:
        await self._context_store.clear(conversation_id)


def resolve_conversation_id(value: str | None) -> str:
    normalized = normalize_conversation_id(value)
    if normalized is not None:
        return normalized
    return new_conversation_id()
