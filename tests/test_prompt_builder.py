"""Tests for prompt assembly and text post-processing."""

import pytest

from synopsis_keeper.services.conversation.summarization.prompt_builder import (
    END_MARKER,
    PromptFrame,
    PromptTemplateError,
    build_history_reference,
    build_scriptwriter_prompt,
    format_injection,
    format_turn_line,
    strip_end_marker,
    strip_reasoning,
    substitute_params,
)
from synopsis_keeper.services.conversation.summarization.state import SynopsisRecord, Turn
from synopsis_keeper.services.conversation.summarization.words import count_words


def test_substitute_params_is_case_insensitive():
    assert substitute_params("Hi {{ USER }}, {{missing}}", {"user": "Bob"}) == "Hi Bob, {{missing}}"


def test_scriptwriter_prompt_defaults_demand_to_character():
    prompt = build_scriptwriter_prompt(
        "Want: {{user_demand}} / {{char}} and {{user}}",
        user_demand="",
        history_reference="",
        char_name="Alice",
        user_name="Bob",
    )
    assert prompt == "Want: a story development that fits Alice's personality / Alice and Bob"


def test_scriptwriter_prompt_requires_template():
    with pytest.raises(PromptTemplateError):
        build_scriptwriter_prompt("  ", user_demand="", history_reference="", char_name="A", user_name="B")


def test_history_reference_block():
    block = build_history_reference([SynopsisRecord.create("One"), SynopsisRecord.create("Two")])
    assert block.splitlines() == [
        "These are the previous 2 synopsis(es) for reference:",
        "Previous Synopsis #1: One",
        "Previous Synopsis #2: Two",
    ]
    assert build_history_reference([]) == ""


def test_turn_lines_label_narration():
    assert format_turn_line(3, Turn(author="Bob", text=" hi ")) == "[3] Bob: hi"
    assert format_turn_line(4, Turn(author="", text="Rain falls.", is_system=True)) == "[4] narration: Rain falls."
    assert format_turn_line(5, Turn(author="Alice", text="")) == "[5] Alice: (empty)"


def test_frame_render_without_previous_synopsis():
    prompt = PromptFrame(system_prompt="Write.").render(["[0] Bob: hi"])
    content = prompt.messages[0]["content"]
    assert "Current synopsis:\nNone" in content
    assert content.endswith("[0] Bob: hi")
    assert prompt.text.startswith("Write.\n\n")


def test_strip_reasoning_blocks():
    assert strip_reasoning("<think>hmm</think>\nPlot. <thinking>more</thinking>") == "Plot."


def test_strip_end_marker():
    assert strip_end_marker(f"Done {END_MARKER} now") == ("Done  now", True)
    assert strip_end_marker("plain") == ("plain", False)


def test_injection_validation_fallbacks():
    injection = format_injection(
        "Plot", template="{{user}} sees {{synopsis}}", user_name="Bob", position="sideways", depth=-3, role="narrator"
    )
    assert injection.text == "Bob sees Plot"
    assert (injection.position, injection.depth, injection.role) == ("in_prompt", 2, "system")


def test_word_count_handles_cjk_and_contractions():
    assert count_words("don't stop-believing now") == 3
    assert count_words("你好世界") == 4
