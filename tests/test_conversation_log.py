"""Tests for the host-owned conversation log."""

import asyncio

from synopsis_keeper.services.conversation.log import ConversationLog
from synopsis_keeper.services.conversation.summarization.state import ANCHOR_ANNOTATION, resolve_anchor_index


def test_turns_and_annotations_persist(tmp_path):
    path = tmp_path / "chat.json"
    log = ConversationLog("chat", path, participant_id="Alice", user_name="Bob")
    log.append_turn("Bob", "Hi")
    log.append_turn("", "Thunder.", is_system=True)
    assert log.annotate(0, ANCHOR_ANNOTATION, True) is True
    assert log.annotate(5, ANCHOR_ANNOTATION, True) is False
    log.persist()

    reloaded = ConversationLog("chat", path)

    turns = reloaded.current_turns()
    assert [turn.text for turn in turns] == ["Hi", "Thunder."]
    assert turns[1].is_system is True
    assert turns[0].is_anchor is True
    assert reloaded.participant_id == "Alice"
    assert reloaded.user_name == "Bob"


def test_reads_return_copies(tmp_path):
    log = ConversationLog("chat", tmp_path / "chat.json")
    log.append_turn("Bob", "Hi")

    log.current_turns()[0].annotations["x"] = 1

    assert log.current_turns()[0].annotations == {}


def test_clear_changes_fingerprint(tmp_path):
    log = ConversationLog("chat", tmp_path / "chat.json")
    log.append_turn("Bob", "Hi")
    before = log.current_fingerprint()

    log.clear()

    assert log.turn_count() == 0
    assert log.current_fingerprint() != before


def test_anchor_rederived_from_marker_after_deletion(tmp_path):
    log = ConversationLog("chat", tmp_path / "chat.json")
    for number in range(5):
        log.append_turn("Bob", f"line {number}")
    log.annotate(3, ANCHOR_ANNOTATION, True)

    log.delete_turn(0)

    assert resolve_anchor_index(log.current_turns(), stored_anchor=3) == 2


def test_wait_for_stream():
    log = ConversationLog("chat")

    async def scenario():
        log.begin_streaming()
        assert await log.wait_for_stream(timeout=0.01) is False
        asyncio.get_running_loop().call_later(0.01, log.finish_streaming)
        return await log.wait_for_stream(timeout=1)

    assert asyncio.run(scenario()) is True
    assert log.is_streaming is False
