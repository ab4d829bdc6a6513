"""Tests for the chat-completion generation backends."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from synopsis_keeper.config import Settings
from synopsis_keeper.llm_client import LLMError
from synopsis_keeper.services.conversation.summarization import backends
from synopsis_keeper.services.conversation.summarization.backends import (
    ChatCompletionBackend,
    GenerationError,
    build_generation_backend,
)
from synopsis_keeper.services.conversation.summarization.state import CancellationToken


MESSAGES = [{"role": "user", "content": "summarize"}]


def _backend(**kwargs):
    kwargs.setdefault("name", "main")
    kwargs.setdefault("model", "test-model")
    kwargs.setdefault("base_url", "https://llm.example/v1")
    kwargs.setdefault("api_key", "secret")
    return ChatCompletionBackend(**kwargs)


def test_generate_returns_stripped_content():
    payload = {"choices": [{"message": {"content": "  The plot thickens.  "}}]}
    with patch.object(backends, "request_chat_completion", AsyncMock(return_value=payload)) as request:
        text = asyncio.run(_backend().generate(MESSAGES, max_output_tokens=128))

    assert text == "The plot thickens."
    kwargs = request.await_args.kwargs
    assert kwargs["max_tokens"] == 128
    assert kwargs["base_url"] == "https://llm.example/v1"


def test_client_errors_become_generation_errors():
    with patch.object(backends, "request_chat_completion", AsyncMock(side_effect=LLMError("boom"))):
        with pytest.raises(GenerationError):
            asyncio.run(_backend().generate(MESSAGES))


def test_cancelled_token_short_circuits():
    token = CancellationToken()
    token.cancel()
    with patch.object(backends, "request_chat_completion", AsyncMock()) as request:
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(_backend().generate(MESSAGES, cancel_token=token))
    request.assert_not_awaited()


def test_availability():
    assert _backend().is_available() is True
    assert _backend(api_key=None).is_available() is False
    assert _backend(api_key=None, require_key=False).is_available() is True
    assert _backend(base_url=None).is_available() is False


def test_source_selection():
    local = build_generation_backend(Settings(synopsis_source="local", local_base_url="http://127.0.0.1:1234/v1"))
    main = build_generation_backend(Settings(synopsis_source="bogus", llm_api_key="k"))

    assert local.name == "local"
    assert local.is_available() is True
    assert main.name == "main"
