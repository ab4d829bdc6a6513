"""Token estimation and context budget resolution for synopsis requests."""

from __future__ import annotations

import inspect
import math
from typing import Any, Awaitable, Optional, Protocol, Union

import tiktoken

from ....logging_config import logger


FALLBACK_CONTEXT_SIZE = 2048
DEFAULT_BUDGET_FRACTION = 0.75


class BudgetConfigurationError(ValueError):
    """Raised when the resolved context budget is not positive."""


class TokenCounter(Protocol):
    """Backend-specific token counting. Either method may be sync or async."""

    def count_tokens(self, text: str) -> Union[int, Awaitable[int]]:  # pragma: no cover - typing protocol
        ...

    def max_context_size(self) -> Union[int, Awaitable[int]]:  # pragma: no cover - typing protocol
        ...


class TiktokenCounter:
    """Counts tokens with a tiktoken encoding; the encoder is loaded on first use."""

    def __init__(self, encoding_name: str = "cl100k_base", context_size: int = 8192) -> None:
        self._encoding_name = encoding_name
        self._context_size = context_size
        self._encoder: Optional[tiktoken.Encoding] = None

    def _get_encoder(self) -> tiktoken.Encoding:
        if self._encoder is None:
            self._encoder = tiktoken.get_encoding(self._encoding_name)
        return self._encoder

    def count_tokens(self, text: str) -> int:
        return len(self._get_encoder().encode(text or "", disallowed_special=()))

    def max_context_size(self) -> int:
        return self._context_size


def approximate_tokens(text: str, padding: int = 0) -> int:
    return math.ceil(len(text or "") / 5) + padding


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TokenBudgetEstimator:
    """Measures text cost with a pluggable counter and resolves request budgets.

    ``estimate`` never raises: when the counter fails it degrades to a
    character-based approximation so callers can always proceed.
    """

    def __init__(
        self,
        counter: TokenCounter,
        *,
        fallback_context_size: int = FALLBACK_CONTEXT_SIZE,
        budget_fraction: float = DEFAULT_BUDGET_FRACTION,
    ) -> None:
        self._counter = counter
        self._fallback_context_size = fallback_context_size
        self._budget_fraction = budget_fraction

    @property
    def counter(self) -> TokenCounter:
        return self._counter

    async def estimate(self, text: str, padding: int = 0) -> int:
        try:
            count = await _resolve(self._counter.count_tokens(text or ""))
            return int(count) + padding
        except Exception as exc:
            logger.warning(
                "token counting failed; using length estimate",
                extra={"error": str(exc), "length": len(text or "")},
            )
            return approximate_tokens(text, padding)

    async def budget_for(self, override_length: int) -> int:
        try:
            max_context = int(await _resolve(self._counter.max_context_size()))
        except Exception as exc:
            logger.warning(
                "context size lookup failed; using fallback",
                extra={"error": str(exc), "fallback": self._fallback_context_size},
            )
            max_context = self._fallback_context_size

        if override_length and override_length > 0:
            budget = max_context - override_length
        else:
            budget = math.floor(max_context * self._budget_fraction)

        if budget <= 0:
            raise BudgetConfigurationError(
                f"Resolved synopsis budget is {budget} tokens "
                f"(context {max_context}, response override {override_length})"
            )
        return budget

    def pinned(self) -> "PinnedEstimator":
        """Return a measurer that keeps one strategy for a whole packing pass."""
        return PinnedEstimator(self._counter)


class PinnedEstimator:
    """Single-pass measurer.

    After the first counter failure every later measurement in the same pass
    uses the approximation, so incremental measurements stay comparable.
    """

    def __init__(self, counter: TokenCounter) -> None:
        self._counter = counter
        self.degraded = False

    async def measure(self, text: str, padding: int = 0) -> int:
        if not self.degraded:
            try:
                count = await _resolve(self._counter.count_tokens(text or ""))
                return int(count) + padding
            except Exception as exc:
                self.degraded = True
                logger.warning(
                    "token counting failed mid-pass; degrading for remainder of pass",
                    extra={"error": str(exc)},
                )
        return approximate_tokens(text, padding)


__all__ = [
    "BudgetConfigurationError",
    "PinnedEstimator",
    "TiktokenCounter",
    "TokenBudgetEstimator",
    "TokenCounter",
    "approximate_tokens",
]
