"""Pluggable text-generation backends for synopsis requests."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol

from ....config import Settings
from ....llm_client import LLMError, extract_message_content, request_chat_completion
from ....logging_config import logger
from .estimator import TiktokenCounter, TokenCounter
from .state import CancellationToken


SOURCE_MAIN = "main"
SOURCE_LOCAL = "local"
SOURCES = (SOURCE_MAIN, SOURCE_LOCAL)


class GenerationError(RuntimeError):
    """Raised when a backend fails to produce a completion."""


class GenerationBackend(Protocol):
    name: str

    def is_available(self) -> bool:  # pragma: no cover - typing protocol
        ...

    async def generate(
        self,
        messages: List[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:  # pragma: no cover - typing protocol
        ...


class ChatCompletionBackend:
    """OpenAI-compatible chat completion endpoint reached over httpx."""

    def __init__(
        self,
        *,
        name: str,
        model: str,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        require_key: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        self.name = name
        self._model = model
        self._base_url = base_url
        self._api_key = api_key
        self._require_key = require_key
        self._timeout = timeout

    def is_available(self) -> bool:
        if not self._base_url:
            return False
        return bool(self._api_key) or not self._require_key

    async def generate(
        self,
        messages: List[Dict[str, str]],
        *,
        max_output_tokens: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        if cancel_token is not None and cancel_token.cancelled:
            raise asyncio.CancelledError()
        if not self._base_url:
            raise GenerationError(f"{self.name} backend has no base URL configured")

        try:
            response = await request_chat_completion(
                model=self._model,
                messages=messages,
                api_key=self._api_key,
                base_url=self._base_url,
                max_tokens=max_output_tokens if max_output_tokens and max_output_tokens > 0 else None,
                require_key=self._require_key,
                timeout=self._timeout,
            )
            return extract_message_content(response).strip()
        except LLMError as exc:
            logger.warning(
                "synopsis backend request failed",
                extra={"backend": self.name, "error": str(exc)},
            )
            raise GenerationError(str(exc)) from exc


def normalize_source(source: str) -> str:
    value = (source or "").strip().lower()
    if value not in SOURCES:
        logger.warning("unknown synopsis source; using main", extra={"source": source})
        return SOURCE_MAIN
    return value


def build_generation_backend(settings: Settings) -> GenerationBackend:
    source = normalize_source(settings.synopsis_source)
    if source == SOURCE_LOCAL:
        return ChatCompletionBackend(
            name=SOURCE_LOCAL,
            model=settings.local_model,
            base_url=settings.local_base_url,
            require_key=False,
            timeout=settings.request_timeout_seconds,
        )
    return ChatCompletionBackend(
        name=SOURCE_MAIN,
        model=settings.summarizer_model,
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout=settings.request_timeout_seconds,
    )


def build_token_counter(settings: Settings) -> TokenCounter:
    return TiktokenCounter(
        encoding_name=settings.tokenizer_encoding,
        context_size=settings.synopsis_context_size,
    )


__all__ = [
    "ChatCompletionBackend",
    "GenerationBackend",
    "GenerationError",
    "SOURCES",
    "SOURCE_LOCAL",
    "SOURCE_MAIN",
    "build_generation_backend",
    "build_token_counter",
    "normalize_source",
]
