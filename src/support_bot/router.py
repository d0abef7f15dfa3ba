from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from support_bot.completion_clients import CompletionProvider
from support_bot.errors import NoProviderAvailable, ProviderError
from support_bot.types import Failure, ProviderResult, Success, Turn

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class RouterConfig:
    """Providers in priority order, plus the per-call timeout."""

    providers: tuple[tuple[str, CompletionProvider], ...] = ()
    timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS

    @property
    def provider_names(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.providers)


class CompletionRouter:
    def __init__(self, config: RouterConfig) -> None:
        self._config = config

    @property
    def provider_names(self) -> tuple[str, ...]:
        return self._config.provider_names

    async def generate(
        self,
        system_prompt: str,
        context: Sequence[Turn],
        user_text: str,
    ) -> str:
        failures: list[tuple[str, Failure]] = []
        for name, provider in self._config.providers:
            result = await self._call_provider(
                name,
                provider,
                system_prompt=system_prompt,
                context=context,
                user_text=user_text,
            )
            if isinstance(result, Success):
                if failures:
                    logger.info(
                        "provider_fallback_succeeded provider=%s skipped=%s",
                        name,
                        ",".join(failed for failed, _ in failures),
                    )
                return result.text

            logger.warning("provider_failed provider=%s reason=%s", name, result.reason)
            failures.append((name, result))

        if any(failure.blank for _, failure in failures):
            # A provider answered, just with nothing usable.
            logger.warning(
                "all_providers_blank providers=%s", ",".join(self.provider_names)
            )
            return ""

        raise NoProviderAvailable(tuple(failures))

    async def _call_provider(
        self,
        name: str,
        provider: CompletionProvider,
        *,
        system_prompt: str,
        context: Sequence[Turn],
        user_text: str,
    ) -> ProviderResult:
        try:
            rendering = provider.render(
                system_prompt=system_prompt, context=context, user_text=user_text
            )
            text = await asyncio.wait_for(
                provider.complete(rendering),
                timeout=self._config.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return Failure(f"timed out after {self._config.timeout_seconds:g}s")
        except ProviderError as exc:
            return Failure(exc.detail)
        except Exception as exc:
            logger.exception("provider_unexpected_error provider=%s", name)
            return Failure(f"unexpected error: {type(exc).__name__}")

        if not isinstance(text, str) or not text.strip():
            return Failure("empty reply", blank=True)
        return Success(text.strip())
