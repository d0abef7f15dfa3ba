from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from redis.exceptions import RedisError

from support_bot.errors import CacheUnavailable
from support_bot.types import Turn, parse_turn

logger = logging.getLogger(__name__)

TrimMode = Literal["messages", "pairs"]

CONTEXT_KEY_PREFIX = "chat:context:"
DEFAULT_MAX_MESSAGES = 3
DEFAULT_TTL_SECONDS = 300


class ContextStore(Protocol):
    async def append(self, conversation_id: str, turn: Turn) -> None: ...

    async def read(self, conversation_id: str) -> tuple[Turn, ...]: ...

    async def clear(self, conversation_id: str) -> None: ...


def context_key(conversation_id: str) -> str:
    return f"{CONTEXT_KEY_PREFIX}{conversation_id}"


def message_bound(max_entries: int, trim_mode: TrimMode) -> int:
    """Number of raw messages kept per conversation.

    In ``pairs`` mode the configured bound counts user+ai exchanges, so the
    list holds twice as many messages.
    """
    bound = max(1, max_entries)
    if trim_mode == "pairs":
        return bound * 2
    return bound


@dataclass
class _Conversation:
    turns: list[Turn]
    expires_at: float


class InMemoryContextStore:
    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_MESSAGES,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        trim_mode: TrimMode = "messages",
    ) -> None:
        self._max_messages = message_bound(max_entries, trim_mode)
        self._ttl_seconds = max(1, ttl_seconds)
        self._conversations: dict[str, _Conversation] = {}

    async def read(self, conversation_id: str) -> tuple[Turn, ...]:
        now = time.monotonic()
        self._purge(now)

        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return ()
        return tuple(conversation.turns)

    async def append(self, conversation_id: str, turn: Turn) -> None:
        now = time.monotonic()
        self._purge(now)

        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = _Conversation(turns=[], expires_at=now + self._ttl_seconds)
            self._conversations[conversation_id] = conversation

        conversation.turns.append(turn)
        if len(conversation.turns) > self._max_messages:
            conversation.turns = conversation.turns[-self._max_messages :]

        conversation.expires_at = now + self._ttl_seconds

    async def clear(self, conversation_id: str) -> None:
        self._conversations.pop(conversation_id, None)

    def _purge(self, now: float) -> None:
        expired = [
            key
            for key, conversation in self._conversations.items()
            if conversation.expires_at <= now
        ]
        for key in expired:
            del self._conversations[key]


class RedisContextStore:
    """Rolling context kept in a Redis list per conversation.

    Entries are JSON ``{"sender", "text"}`` objects under
    ``chat:context:<conversation id>``. Every append trims the list to the
    bound and refreshes the key expiry; reads leave the expiry untouched.
    """

    def __init__(
        self,
        *,
        redis: Any,
        max_entries: int = DEFAULT_MAX_MESSAGES,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        trim_mode: TrimMode = "messages",
    ) -> None:
        self._redis = redis
        self._max_messages = message_bound(max_entries, trim_mode)
        self._ttl_seconds = max(1, ttl_seconds)

    async def read(self, conversation_id: str) -> tuple[Turn, ...]:
        key = context_key(conversation_id)
        try:
            raw_entries = await self._redis.lrange(key, 0, -1)
        except (RedisError, OSError) as exc:
            logger.warning("context_read_failed key=%s detail=%s", key, exc)
            return ()

        turns: list[Turn] = []
        for raw in raw_entries:
            turn = parse_turn(raw)
            if turn is None:
                logger.debug("context_entry_skipped key=%s", key)
                continue
            turns.append(turn)
        return tuple(turns)

    async def append(self, conversation_id: str, turn: Turn) -> None:
        key = context_key(conversation_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.rpush(key, turn.to_json())
                pipe.ltrim(key, -self._max_messages, -1)
                pipe.expire(key, self._ttl_seconds)
                await pipe.execute()
        except (RedisError, OSError) as exc:
            raise CacheUnavailable(f"Context append failed for {key}") from exc

    async def clear(self, conversation_id: str) -> None:
        key = context_key(conversation_id)
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as exc:
            raise CacheUnavailable(f"Context clear failed for {key}") from exc
