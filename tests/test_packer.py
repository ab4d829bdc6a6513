"""Tests for budget-aware history packing."""

import asyncio

from conftest import TokWordCounter
from synopsis_keeper.services.conversation.summarization.estimator import TokenBudgetEstimator
from synopsis_keeper.services.conversation.summarization.packer import (
    HistoryPacker,
    PackingStrategy,
    turns_since_anchor,
)
from synopsis_keeper.services.conversation.summarization.prompt_builder import PromptFrame
from synopsis_keeper.services.conversation.summarization.state import SynopsisRecord, Turn


def _tok(count):
    return " ".join(["tok"] * count)


def _pending(*costs):
    turns = [Turn(author="Bob", text=_tok(cost)) for cost in costs]
    return turns_since_anchor(turns, -1)


def _packer(strategy=PackingStrategy.FORWARD, counter=None, **kwargs):
    estimator = TokenBudgetEstimator(counter or TokWordCounter())
    return HistoryPacker(estimator, strategy=strategy, **kwargs)


FRAME = PromptFrame(system_prompt=_tok(20))


class TestForwardPacking:
    def test_stops_before_overshooting_turn(self):
        prompt = asyncio.run(_packer().pack(_pending(30, 30, 30), FRAME, 100))

        assert prompt.included_indices == (0, 1)
        assert prompt.last_included_index == 1
        assert prompt.tokens == 80

    def test_exact_fit_is_accepted(self):
        prompt = asyncio.run(_packer().pack(_pending(30, 50), FRAME, 100))

        assert prompt.included_indices == (0, 1)
        assert prompt.tokens == 100

    def test_nothing_fits_returns_empty(self):
        prompt = asyncio.run(_packer().pack(_pending(90), FRAME, 100))

        assert prompt.is_empty
        assert prompt.last_included_index is None
        assert prompt.text == ""

    def test_max_turns_stops_early(self):
        prompt = asyncio.run(_packer(max_turns=1).pack(_pending(1, 1, 1), FRAME, 100))
        assert prompt.included_indices == (0,)

    def test_padding_counts_against_budget(self):
        prompt = asyncio.run(_packer(padding=25).pack(_pending(30, 30), FRAME, 100))
        assert prompt.included_indices == (0,)

    def test_only_turns_after_anchor(self):
        turns = [Turn(author="Bob", text=_tok(5)) for _ in range(4)]
        prompt = asyncio.run(_packer().pack(turns_since_anchor(turns, 1), FRAME, 100))
        assert prompt.included_indices == (2, 3)

    def test_result_measures_within_budget(self):
        counter = TokWordCounter()
        prompt = asyncio.run(_packer(counter=counter).pack(_pending(10, 25, 40, 5), FRAME, 90))

        assert counter.count_tokens(prompt.text) <= 90


class TestReversePacking:
    def test_keeps_newest_turns(self):
        prompt = asyncio.run(
            _packer(PackingStrategy.REVERSE).pack(_pending(30, 30, 30), FRAME, 100)
        )

        assert prompt.included_indices == (1, 2)
        assert prompt.last_included_index == 2

    def test_turns_are_emitted_chronologically(self):
        prompt = asyncio.run(_packer(PackingStrategy.REVERSE).pack(_pending(1, 2, 3), FRAME, 100))

        assert prompt.included_indices == (0, 1, 2)
        assert prompt.text.index("[0]") < prompt.text.index("[1]") < prompt.text.index("[2]")

    def test_newest_turn_too_large(self):
        prompt = asyncio.run(_packer(PackingStrategy.REVERSE).pack(_pending(10, 90), FRAME, 100))
        assert prompt.is_empty


class TestDegradedPass:
    def test_selection_still_fits_after_counter_failure(self):
        counter = TokWordCounter(fail_on_call=2)
        frame = PromptFrame(system_prompt="Summarize.")
        pending = turns_since_anchor([Turn(author="Bob", text="x" * 100) for _ in range(5)], -1)

        prompt = asyncio.run(_packer(counter=counter).pack(pending, frame, 60))

        assert not prompt.is_empty
        assert prompt.tokens <= 60


class TestHistoryReferences:
    def test_newest_first_prefix_within_fraction(self):
        records = [
            SynopsisRecord.create(_tok(10)),
            SynopsisRecord.create(_tok(10)),
            SynopsisRecord.create(_tok(10)),
        ]
        selected = asyncio.run(
            _packer().select_history(records, count=3, budget=100, fraction=0.2)
        )
        assert selected == records[:2]

    def test_stops_at_first_overflow(self):
        records = [SynopsisRecord.create(_tok(30)), SynopsisRecord.create(_tok(1))]
        selected = asyncio.run(
            _packer().select_history(records, count=2, budget=100, fraction=0.2)
        )
        assert selected == []

    def test_count_zero_disables(self):
        records = [SynopsisRecord.create("short")]
        assert asyncio.run(_packer().select_history(records, count=0, budget=100, fraction=0.2)) == []
