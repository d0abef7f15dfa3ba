from __future__ import annotations

import uuid
from typing import Any


def as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def first_non_empty_str(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def normalize_conversation_id(value: str | None) -> str | None:
    """Return a caller-supplied id if it is a well-formed UUID, else None.

    Absent, blank and malformed values (including the literal ``"undefined"``
    some clients send) all count as "no conversation yet".
    """
    if value is None:
        return None

    stripped = value.strip()
    if not stripped:
        return None

    try:
        parsed = uuid.UUID(stripped)
    except ValueError:
        return None

    if str(parsed) != stripped.lower():
        return None
    return stripped


def new_conversation_id() -> str:
    return str(uuid.uuid4())
