from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from support_bot.chat_prompt import build_chat_messages, build_transcript
from support_bot.errors import ProviderError
from support_bot.types import Turn

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_GROQ_MODEL = "llama-3.1-8b-instant"
DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_OPENROUTER_MODEL = "openai/gpt-4o-mini"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

_RETRY_STATUSES = {429, 500, 502, 503, 504}
_MAX_ATTEMPTS = 2
_BACKOFF_SECONDS = 0.5


class CompletionProvider(Protocol):
    def render(
        self, *, system_prompt: str, context: Sequence[Turn], user_text: str
    ) -> Any: ...

    async def complete(self, rendering: Any) -> str: ...


def attempt_timeout(budget_seconds: float) -> float:
    """Per-request timeout that fits every attempt and backoff into the budget."""
    backoff = sum(
        _BACKOFF_SECONDS * (attempt + 1) for attempt in range(_MAX_ATTEMPTS - 1)
    )
    return max(0.1, (budget_seconds - backoff) / _MAX_ATTEMPTS)


@dataclass(frozen=True)
class TranscriptPrompt:
    system_instruction: str
    contents: str


class GeminiClient:
    """Google Generative Language ``generateContent`` client.

    Context is flattened into a ``SENDER: text`` transcript and the system
    prompt travels separately as ``systemInstruction``.
    """

    def __init__(
        self,
        *,
        api_key: str,
        http_client: httpx.AsyncClient,
        model: str = DEFAULT_GEMINI_MODEL,
        base_url: str = DEFAULT_GEMINI_BASE_URL,
        timeout_seconds: float = 30.0,
        max_output_tokens: int = 512,
    ) -> None:
        self._api_key = api_key
        self._http_client = http_client
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._max_output_tokens = max_output_tokens

    def render(
        self, *, system_prompt: str, context: Sequence[Turn], user_text: str
    ) -> TranscriptPrompt:
        return TranscriptPrompt(
            system_instruction=system_prompt,
            contents=build_transcript(history=context, prompt=user_text),
        )

    async def complete(self, rendering: TranscriptPrompt) -> str:
        url = f"{self._base_url}/models/{self._model}:generateContent"
        headers = {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
        }
        payload = {
            "systemInstruction": {"parts": [{"text": rendering.system_instruction}]},
            "contents": [{"role": "user", "parts": [{"text": rendering.contents}]}],
            "generationConfig": {"maxOutputTokens": self._max_output_tokens},
        }

        response = await _post_with_retries(
            self._http_client,
            url,
            payload=payload,
            headers=headers,
            timeout_seconds=self._timeout_seconds,
        )
        return _extract_gemini_text(response)


class ChatCompletionsClient:
    """OpenAI-compatible ``/chat/completions`` client (Groq, OpenRouter)."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout_seconds: float = 30.0,
        max_output_tokens: int = 512,
        temperature: float = 0.3,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._max_output_tokens = max_output_tokens
        self._temperature = temperature
        self._extra_headers = dict(extra_headers or {})

    def render(
        self, *, system_prompt: str, context: Sequence[Turn], user_text: str
    ) -> list[dict[str, str]]:
        return build_chat_messages(
            system_prompt=system_prompt, history=context, prompt=user_text
        )

    async def complete(self, rendering: list[dict[str, str]]) -> str:
        url = f"{self._base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            **self._extra_headers,
        }
        payload = {
            "model": self._model,
            "messages": rendering,
            "max_tokens": self._max_output_tokens,
            "temperature": self._temperature,
        }

        response = await _post_with_retries(
            self._http_client,
            url,
            payload=payload,
            headers=headers,
            timeout_seconds=self._timeout_seconds,
        )
        return _extract_chat_completion_text(response)


async def _post_with_retries(
    http_client: httpx.AsyncClient,
    url: str,
    *,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout_seconds: float,
) -> httpx.Response:
    for attempt in range(_MAX_ATTEMPTS):
        last_attempt = attempt == _MAX_ATTEMPTS - 1
        try:
            response = await http_client.post(
                url,
                json=payload,
                headers=headers,
                timeout=timeout_seconds,
            )
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            if last_attempt:
                raise ProviderError("Completion request timed out.") from exc
            await asyncio.sleep(_BACKOFF_SECONDS * (attempt + 1))
            continue

        if response.status_code < 400:
            return response

        if response.status_code in _RETRY_STATUSES and not last_attempt:
            await asyncio.sleep(_BACKOFF_SECONDS * (attempt + 1))
            continue

        if response.status_code in {401, 403}:
            raise ProviderError(
                "Completion service authorization failed.",
                status_code=response.status_code,
            )

        detail = _extract_response_detail(response)
        raise ProviderError(
            f"Completion request failed: {detail}",
            status_code=response.status_code,
        )

    raise ProviderError("Completion request failed unexpectedly.")


def _response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError("Completion service returned invalid JSON.") from exc

    if not isinstance(payload, dict):
        raise ProviderError("Completion service returned an invalid response format.")
    return payload


def _extract_chat_completion_text(response: httpx.Response) -> str:
    payload = _response_json(response)

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""

    first_choice = choices[0]
    if not isinstance(first_choice, dict):
        raise ProviderError("Completion service returned an invalid reply payload.")

    message = first_choice.get("message")
    if not isinstance(message, dict):
        raise ProviderError("Completion service returned an invalid message payload.")

    return _extract_content_text(message.get("content"))


def _extract_gemini_text(response: httpx.Response) -> str:
    payload = _response_json(response)

    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""

    first_candidate = candidates[0]
    if not isinstance(first_candidate, dict):
        raise ProviderError("Completion service returned an invalid candidate.")

    content = first_candidate.get("content")
    if not isinstance(content, dict):
        return ""

    return _extract_content_text(content.get("parts"))


def _extract_content_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()

    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str) and text.strip():
                    parts.append(text.strip())
        return "\n".join(parts)

    return ""


def _extract_response_detail(response: httpx.Response) -> str:
    detail = ""
    try:
        payload = response.json()
        if isinstance(payload, dict):
            detail = str(
                payload.get("error")
                or payload.get("message")
                or payload.get("detail")
                or payload
            )
        else:
            detail = str(payload)
    except ValueError:
        detail = response.text

    detail = " ".join(detail.strip().split())
    if not detail:
        return "No error detail"
    if len(detail) > 240:
        return f"{detail[:240]}..."
    return detail
