from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from support_bot.parsing import as_dict, first_non_empty_str

Sender = Literal["user", "ai"]
SENDERS: frozenset[str] = frozenset({"user", "ai"})


@dataclass(frozen=True)
class Turn:
    sender: Sender
    text: str

    def to_json(self) -> str:
        return json.dumps({"sender": self.sender, "text": self.text})

    def as_dict(self) -> dict[str, str]:
        return {"sender": self.sender, "text": self.text}


@dataclass(frozen=True)
class Success:
    text: str


@dataclass(frozen=True)
class Failure:
    reason: str
    blank: bool = False


ProviderResult = Success | Failure


@dataclass(frozen=True)
class IncomingChatMessage:
    text: str
    session_id: str | None = None


def parse_turn(raw: str | bytes) -> Turn | None:
    try:
        payload = json.loads(raw)
    except ValueError:
        return None

    return turn_from_dict(as_dict(payload))


def turn_from_dict(payload: dict[str, Any]) -> Turn | None:
    sender = payload.get("sender")
    text = payload.get("text")
    if sender not in SENDERS or not isinstance(text, str):
        return None
    return Turn(sender=sender, text=text)


def parse_chat_request(payload: dict[str, Any]) -> IncomingChatMessage | None:
    text = payload.get("message")
    if not isinstance(text, str):
        text = payload.get("rmessage")
    if not isinstance(text, str):
        return None

    session_id = first_non_empty_str(payload, "sessionId", "conversationId")
    return IncomingChatMessage(text=text, session_id=session_id)
