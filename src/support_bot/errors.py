from __future__ import annotations

from support_bot.types import Failure


class CacheUnavailable(Exception):
    pass


class PersistenceError(Exception):
    pass


class ProviderError(Exception):
    def __init__(self, detail: str, *, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class NoProviderAvailable(Exception):
    def __init__(self, failures: tuple[tuple[str, Failure], ...] = ()) -> None:
        if failures:
            summary = "; ".join(
                f"{name}: {failure.reason}" for name, failure in failures
            )
            message = f"No LLM provider available ({summary})"
        else:
            message = "No LLM provider available"
        super().__init__(message)
        self.failures = failures
