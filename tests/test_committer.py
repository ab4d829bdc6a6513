"""Tests for the request/commit cycle."""

import asyncio

from conftest import ScriptedBackend, add_turns
from synopsis_keeper.services.conversation.summarization.backends import GenerationError
from synopsis_keeper.services.conversation.summarization.committer import CommitStatus, SynopsisCommitter
from synopsis_keeper.services.conversation.summarization.packer import BudgetedPrompt
from synopsis_keeper.services.conversation.summarization.state import (
    ANCHOR_ANNOTATION,
    SYNOPSIS_ANNOTATION,
    CommitPhase,
    CurrentSynopsis,
    SynopsisContext,
    SynopsisState,
)


def _prompt(last_index):
    return BudgetedPrompt(
        text="packed",
        last_included_index=last_index,
        messages=[{"role": "user", "content": "packed"}],
        included_indices=tuple(range(last_index + 1)),
    )


def _preparer(last_index):
    async def prepare():
        return _prompt(last_index)

    return prepare


def _committer(conversation_log, state_log, backend, feed=None, listeners=()):
    return SynopsisCommitter(
        conversation_log,
        state_log,
        backend,
        archive_limit=3,
        notifications=feed,
        listeners=listeners,
    )


class TestCommit:
    def test_commit_sets_text_anchor_and_annotations(self, conversation_log, state_log):
        add_turns(conversation_log, 5)
        backend = ScriptedBackend(["<think>plan</think> The party sets sail."])
        context = SynopsisContext("chat-1")

        outcome = asyncio.run(_committer(conversation_log, state_log, backend).run(context, _preparer(3)))

        assert outcome.status is CommitStatus.COMMITTED
        assert outcome.text == "The party sets sail."
        assert outcome.anchor_index == 3
        state = state_log.load_state()
        assert state.current.text == "The party sets sail."
        assert state.current.anchor_index == 3
        anchor_turn = conversation_log.current_turns()[3]
        assert anchor_turn.annotations[SYNOPSIS_ANNOTATION] == "The party sets sail."
        assert anchor_turn.annotations[ANCHOR_ANNOTATION] is True
        assert context.in_flight is False
        assert context.phase is CommitPhase.IDLE

    def test_previous_synopsis_is_archived(self, conversation_log, state_log):
        add_turns(conversation_log, 4)
        state_log.write_state(SynopsisState(current=CurrentSynopsis(text="Old plan", anchor_index=0)))
        backend = ScriptedBackend(["New plan"])

        asyncio.run(_committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), _preparer(2)))

        state = state_log.load_state()
        assert state.current.text == "New plan"
        assert [record.content for record in state.archive] == ["Old plan"]

    def test_anchor_never_moves_backwards(self, conversation_log, state_log):
        add_turns(conversation_log, 8)
        state_log.write_state(SynopsisState(current=CurrentSynopsis(text="Old", anchor_index=6)))
        backend = ScriptedBackend(["Newer"])

        outcome = asyncio.run(
            _committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), _preparer(4))
        )

        assert outcome.anchor_index == 6
        assert state_log.load_state().current.anchor_index == 6

    def test_listener_failure_does_not_block_commit(self, conversation_log, state_log):
        add_turns(conversation_log, 2)
        seen = []

        def broken(conversation_id, current):
            raise RuntimeError("listener down")

        def recorder(conversation_id, current):
            seen.append((conversation_id, current.text))

        committer = _committer(conversation_log, state_log, ScriptedBackend(["Done"]), listeners=[broken, recorder])
        outcome = asyncio.run(committer.run(SynopsisContext("chat-1"), _preparer(1)))

        assert outcome.committed
        assert seen == [("chat-1", "Done")]


class TestNonCommitOutcomes:
    def test_empty_result_commits_nothing(self, conversation_log, state_log, feed):
        add_turns(conversation_log, 3)
        state_log.write_state(SynopsisState(current=CurrentSynopsis(text="Keep me", anchor_index=0)))
        context = SynopsisContext("chat-1")

        outcome = asyncio.run(
            _committer(conversation_log, state_log, ScriptedBackend(["   "]), feed).run(
                context, _preparer(2), force=True
            )
        )

        assert outcome.status is CommitStatus.EMPTY
        assert state_log.load_state().current == CurrentSynopsis(text="Keep me", anchor_index=0)
        assert [note.level for note in feed.recent("chat-1")] == ["warning"]
        assert context.in_flight is False

    def test_empty_result_is_silent_when_automatic(self, conversation_log, state_log, feed):
        add_turns(conversation_log, 3)

        asyncio.run(
            _committer(conversation_log, state_log, ScriptedBackend([""]), feed).run(
                SynopsisContext("chat-1"), _preparer(2)
            )
        )

        assert feed.recent("chat-1") == []

    def test_backend_error_is_reported(self, conversation_log, state_log, feed):
        add_turns(conversation_log, 3)
        backend = ScriptedBackend([GenerationError("timeout")])
        context = SynopsisContext("chat-1")

        outcome = asyncio.run(_committer(conversation_log, state_log, backend, feed).run(context, _preparer(2)))

        assert outcome.status is CommitStatus.FAILED
        assert "timeout" in outcome.detail
        assert feed.recent("chat-1")[-1].level == "error"
        assert context.in_flight is False
        assert state_log.load_state().current.is_empty

    def test_nothing_packed_is_skipped(self, conversation_log, state_log):
        backend = ScriptedBackend()

        async def prepare():
            return BudgetedPrompt.empty()

        outcome = asyncio.run(
            _committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), prepare)
        )

        assert outcome.status is CommitStatus.SKIPPED
        assert backend.calls == []

    def test_unforced_request_rejected_while_in_flight(self, conversation_log, state_log):
        context = SynopsisContext("chat-1", in_flight=True)
        backend = ScriptedBackend()

        outcome = asyncio.run(_committer(conversation_log, state_log, backend).run(context, _preparer(0)))

        assert outcome.status is CommitStatus.REJECTED
        assert backend.calls == []
        assert context.in_flight is True


class TestRaces:
    def test_branch_switch_discards_result(self, conversation_log, state_log):
        add_turns(conversation_log, 4)
        backend = ScriptedBackend(["Stale synopsis"])
        backend.on_call = lambda: conversation_log.switch_branch("alternate")
        context = SynopsisContext("chat-1")

        outcome = asyncio.run(_committer(conversation_log, state_log, backend).run(context, _preparer(3)))

        assert outcome.status is CommitStatus.DISCARDED
        assert state_log.load_state().current.is_empty
        assert all(not turn.annotations for turn in conversation_log.current_turns())
        assert context.in_flight is False

    def test_participant_change_discards_result(self, conversation_log, state_log):
        add_turns(conversation_log, 2)
        backend = ScriptedBackend(["Stale synopsis"])
        backend.on_call = lambda: conversation_log.set_participant("Someone Else")

        outcome = asyncio.run(
            _committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), _preparer(1))
        )

        assert outcome.status is CommitStatus.DISCARDED

    def test_forced_request_cancels_in_flight_one(self, conversation_log, state_log):
        add_turns(conversation_log, 4)
        context = SynopsisContext("chat-1")

        async def scenario():
            slow = ScriptedBackend(["Slow result"])
            slow.gate = asyncio.Event()
            slow.started = asyncio.Event()
            first = asyncio.ensure_future(_committer(conversation_log, state_log, slow).run(context, _preparer(1)))
            await slow.started.wait()
            assert context.in_flight is True

            fast = ScriptedBackend(["Fast result"])
            second = await _committer(conversation_log, state_log, fast).run(context, _preparer(3), force=True)
            return await first, second

        first, second = asyncio.run(scenario())

        assert first.status is CommitStatus.CANCELLED
        assert second.status is CommitStatus.COMMITTED
        current = state_log.load_state().current
        assert current.text == "Fast result"
        assert current.anchor_index == 3
        assert context.in_flight is False

    def test_anchor_follows_covered_turn_after_deletion(self, conversation_log, state_log):
        add_turns(conversation_log, 6)
        covered = conversation_log.current_turns()[2]
        backend = ScriptedBackend(["Three turns in."])
        backend.on_call = lambda: conversation_log.delete_turn(0)

        async def prepare():
            return BudgetedPrompt(
                text="packed",
                last_included_index=2,
                messages=[{"role": "user", "content": "packed"}],
                included_indices=(0, 1, 2),
                last_included_turn=covered,
            )

        outcome = asyncio.run(
            _committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), prepare)
        )

        assert outcome.status is CommitStatus.COMMITTED
        assert outcome.anchor_index == 1
        anchor_turn = conversation_log.current_turns()[1]
        assert anchor_turn.text == "hello there 2"
        assert anchor_turn.is_anchor is True

    def test_missing_covered_turn_keeps_prior_anchor(self, conversation_log, state_log):
        add_turns(conversation_log, 6)
        covered = conversation_log.current_turns()[2]
        backend = ScriptedBackend(["Lost its footing."])
        backend.on_call = lambda: conversation_log.delete_turn(2)

        async def prepare():
            return BudgetedPrompt(
                text="packed",
                last_included_index=2,
                messages=[{"role": "user", "content": "packed"}],
                included_indices=(0, 1, 2),
                last_included_turn=covered,
            )

        outcome = asyncio.run(
            _committer(conversation_log, state_log, backend).run(SynopsisContext("chat-1"), prepare)
        )

        assert outcome.status is CommitStatus.COMMITTED
        assert outcome.anchor_index == -1
        assert not any(turn.is_anchor for turn in conversation_log.current_turns())
