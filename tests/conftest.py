"""
Pytest fixtures for synopsis keeper tests.

Provides file-backed logs under tmp_path, a deterministic token counter
and a scripted generation backend.
"""

import asyncio
from typing import Callable, List, Optional

import pytest

from synopsis_keeper.config import Settings
from synopsis_keeper.services.conversation.log import ConversationLog
from synopsis_keeper.services.conversation.summarization.backends import GenerationError
from synopsis_keeper.services.conversation.summarization.manager import SynopsisManager
from synopsis_keeper.services.conversation.summarization.notifications import NotificationFeed
from synopsis_keeper.services.conversation.summarization.synopsis_log import SynopsisStateLog
from synopsis_keeper.services.presets import PresetStore


class TokWordCounter:
    """Counts one token per whitespace-separated "tok"."""

    def __init__(self, context_size: int = 1000, fail_on_call: Optional[int] = None):
        self.context_size = context_size
        self.fail_on_call = fail_on_call
        self.calls = 0

    def count_tokens(self, text):
        self.calls += 1
        if self.fail_on_call is not None and self.calls >= self.fail_on_call:
            raise RuntimeError("tokenizer offline")
        return text.split().count("tok")

    def max_context_size(self):
        return self.context_size


class ScriptedBackend:
    """Returns queued responses; exceptions in the queue are raised."""

    name = "scripted"

    def __init__(self, responses=None, available: bool = True):
        self.responses: List = list(responses or [])
        self.available = available
        self.calls: List[list] = []
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None
        self.on_call: Optional[Callable[[], None]] = None

    def is_available(self):
        return self.available

    async def generate(self, messages, *, max_output_tokens=None, cancel_token=None):
        self.calls.append(messages)
        if self.started is not None:
            self.started.set()
        if self.on_call is not None:
            self.on_call()
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if self.responses else "The heroes reach the harbor."
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        llm_api_key="test-key",
        synopsis_interval=5,
        synopsis_force_words=0,
        synopsis_token_padding=0,
        synopsis_context_size=1000,
        synopsis_history_count=0,
        synopsis_frozen=False,
        synopsis_trigger_mode="interval",
        synopsis_packing_strategy="forward",
        synopsis_max_turns_per_request=0,
        synopsis_override_response_length=0,
    )


@pytest.fixture
def conversation_log(tmp_path):
    return ConversationLog(
        "chat-1",
        tmp_path / "conversations" / "chat-1.json",
        participant_id="Alice",
        user_name="Bob",
    )


@pytest.fixture
def state_log(tmp_path):
    return SynopsisStateLog(tmp_path / "synopsis" / "chat-1.log")


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def counter():
    return TokWordCounter()


@pytest.fixture
def feed():
    return NotificationFeed()


@pytest.fixture
def manager(settings, conversation_log, state_log, backend, counter, feed, tmp_path):
    return SynopsisManager(
        settings,
        backend=backend,
        counter=counter,
        notifications=feed,
        presets=PresetStore(tmp_path / "presets.json"),
        log_resolver=lambda conversation_id: conversation_log,
        state_log_resolver=lambda conversation_id: state_log,
    )


def add_turns(log, count, text="hello there", start=0):
    for offset in range(count):
        author = "Bob" if (start + offset) % 2 == 0 else "Alice"
        log.append_turn(author, f"{text} {start + offset}")


__all__ = ["GenerationError", "ScriptedBackend", "TokWordCounter", "add_turns"]
