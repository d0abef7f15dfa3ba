from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from support_bot.config import Settings
from support_bot.errors import CacheUnavailable, PersistenceError
from support_bot.orchestrator import ConversationOrchestrator
from support_bot.types import parse_chat_request

logger = logging.getLogger(__name__)


class ChatHandler:
    def __init__(
        self,
        *,
        settings: Settings,
        orchestrator: ConversationOrchestrator,
    ) -> None:
        self._settings = settings
        self._orchestrator = orchestrator

    async def handle_message(self, payload: dict[str, object]) -> JSONResponse:
        parsed = parse_chat_request(payload)
        if parsed is None or not parsed.text.strip():
            return JSONResponse({"error": "Empty message"}, status_code=400)

        if len(parsed.text) > self._settings.max_message_chars:
            return JSONResponse(
                {
                    "error": (
                        "Message too long. Maximum is "
                        f"{self._settings.max_message_chars} characters."
                    )
                },
                status_code=400,
            )

        result = await self._orchestrator.handle_turn(parsed.session_id, parsed.text)
        body = {"reply": result.reply_text, "sessionId": result.conversation_id}
        if not result.ok:
            logger.info(
                "chat_turn_degraded status=%s conversation_id=%s",
                result.status,
                result.conversation_id,
            )
            return JSONResponse(body, status_code=500)
        return JSONResponse(body)

    async def handle_history(self, session_id: str) -> JSONResponse:
        try:
            turns = await self._orchestrator.get_history(session_id)
        except PersistenceError:
            logger.exception("history_load_failed conversation_id=%s", session_id)
            return JSONResponse({"error": "Failed to load chat"}, status_code=500)
        return JSONResponse({"messages": [turn.as_dict() for turn in turns]})

    async def handle_reset(self, session_id: str) -> JSONResponse:
        try:
            await self._orchestrator.reset_context(session_id)
        except CacheUnavailable:
            logger.exception("context_reset_failed conversation_id=%s", session_id)
            return JSONResponse({"error": "Failed to reset chat"}, status_code=500)
        return JSONResponse({"status": "cleared"})


def build_router(handler: ChatHandler) -> APIRouter:
    router = APIRouter()

    @router.post("/chat/message")
    async def chat_message(payload: dict[str, object]) -> JSONResponse:
        return await handler.handle_message(payload)

    @router.get("/chat/{session_id}")
    async def chat_history(session_id: str) -> JSONResponse:
        return await handler.handle_history(session_id)

    @router.delete("/chat/{session_id}/context")
    async def chat_reset(session_id: str) -> JSONResponse:
        return await handler.handle_reset(session_id)

    return router
