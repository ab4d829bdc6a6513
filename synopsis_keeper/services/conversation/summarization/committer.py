"""Runs one synopsis attempt and applies its result to the stored state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence

from ....logging_config import logger
from .archive import SynopsisArchive
from .backends import GenerationBackend, GenerationError
from .estimator import BudgetConfigurationError
from .notifications import NotificationFeed
from .packer import BudgetedPrompt
from .prompt_builder import PromptTemplateError, strip_reasoning
from .state import (
    ANCHOR_ANNOTATION,
    SYNOPSIS_ANNOTATION,
    CancellationToken,
    CommitPhase,
    CurrentSynopsis,
    SynopsisContext,
    SynopsisState,
    Turn,
    locate_turn,
    resolve_anchor_index,
)
from .synopsis_log import SynopsisStateLog

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..log import ConversationLog


class CommitStatus(str, Enum):
    COMMITTED = "committed"
    DISCARDED = "discarded"
    CANCELLED = "cancelled"
    EMPTY = "empty"
    FAILED = "failed"
    REJECTED = "rejected"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CommitOutcome:
    status: CommitStatus
    text: str = ""
    anchor_index: Optional[int] = None
    detail: str = ""

    @property
    def committed(self) -> bool:
        return self.status is CommitStatus.COMMITTED


CommitListener = Callable[[str, CurrentSynopsis], Any]
PromptPreparer = Callable[[], Awaitable[BudgetedPrompt]]


class SynopsisCommitter:
    """Request/commit cycle for a single conversation.

    At most one attempt per context is in flight. The conversation
    fingerprint is captured when the attempt starts and compared again once
    the backend answers; any difference means the result belongs to a
    conversation the user has left, and it is dropped without touching state.
    Committing has no suspension points, so two commits never interleave.
    """

    def __init__(
        self,
        log: "ConversationLog",
        state_log: SynopsisStateLog,
        backend: GenerationBackend,
        *,
        archive_limit: int,
        notifications: Optional[NotificationFeed] = None,
        listeners: Sequence[CommitListener] = (),
    ) -> None:
        self._log = log
        self._state_log = state_log
        self._backend = backend
        self._archive_limit = archive_limit
        self._notifications = notifications
        self._listeners: List[CommitListener] = list(listeners)

    async def run(
        self,
        context: SynopsisContext,
        prepare: PromptPreparer,
        *,
        force: bool = False,
        max_output_tokens: Optional[int] = None,
    ) -> CommitOutcome:
        if context.in_flight:
            if not force:
                return CommitOutcome(CommitStatus.REJECTED, detail="generation already in flight")
            context.cancel_in_flight()
            logger.info(
                "cancelled in-flight synopsis for forced request",
                extra={"conversation_id": context.conversation_id},
            )

        token = CancellationToken()
        context.in_flight = True
        context.cancel_token = token
        context.phase = CommitPhase.REQUESTING
        context.attempt += 1
        fingerprint = self._log.current_fingerprint()

        try:
            prompt = await prepare()
            if prompt.is_empty:
                if force:
                    self._notify("warning", "Nothing to summarize within the synopsis budget")
                return CommitOutcome(CommitStatus.SKIPPED, detail="no turns fit the budget")

            logger.info(
                "requesting synopsis",
                extra={
                    "conversation_id": context.conversation_id,
                    "backend": self._backend.name,
                    "turns": len(prompt.included_indices),
                    "tokens": prompt.tokens,
                    "attempt": context.attempt,
                },
            )
            task = asyncio.ensure_future(
                self._backend.generate(
                    prompt.messages,
                    max_output_tokens=max_output_tokens,
                    cancel_token=token,
                )
            )
            token.bind(task)
            try:
                raw = await task
            except asyncio.CancelledError:
                if not token.cancelled:
                    raise
                logger.info("synopsis request cancelled", extra={"conversation_id": context.conversation_id})
                return CommitOutcome(CommitStatus.CANCELLED)

            if token.cancelled:
                return CommitOutcome(CommitStatus.CANCELLED)

            if self._log.current_fingerprint() != fingerprint:
                context.phase = CommitPhase.DISCARDED
                logger.debug(
                    "conversation changed during synopsis request; discarding result",
                    extra={"conversation_id": context.conversation_id},
                )
                return CommitOutcome(CommitStatus.DISCARDED)

            text = strip_reasoning(raw)
            if not text:
                logger.warning(
                    "synopsis backend returned no text",
                    extra={"conversation_id": context.conversation_id, "forced": force},
                )
                if force:
                    self._notify("warning", "Synopsis generation returned no text")
                return CommitOutcome(CommitStatus.EMPTY)

            context.phase = CommitPhase.COMMITTING
            current = self.commit(text, prompt.last_included_index, covered_turn=prompt.last_included_turn)
            self._notify("success", "New synopsis generated!")
            return CommitOutcome(CommitStatus.COMMITTED, text=current.text, anchor_index=current.anchor_index)
        except (BudgetConfigurationError, PromptTemplateError) as exc:
            logger.error(
                "synopsis request misconfigured",
                extra={"conversation_id": context.conversation_id, "error": str(exc)},
            )
            self._notify("error", str(exc))
            return CommitOutcome(CommitStatus.FAILED, detail=str(exc))
        except GenerationError as exc:
            self._notify("error", "Failed to generate synopsis")
            return CommitOutcome(CommitStatus.FAILED, detail=str(exc))
        except Exception as exc:
            logger.exception(
                "synopsis attempt failed",
                extra={"conversation_id": context.conversation_id, "error": str(exc)},
            )
            self._notify("error", "Failed to generate synopsis")
            return CommitOutcome(CommitStatus.FAILED, detail=str(exc))
        finally:
            # A forced request may already own the context.
            if context.cancel_token is token:
                context.in_flight = False
                context.cancel_token = None
                context.phase = CommitPhase.IDLE

    def commit(
        self,
        text: str,
        last_included_index: Optional[int],
        *,
        covered_turn: Optional[Turn] = None,
    ) -> CurrentSynopsis:
        """Store ``text`` as the live synopsis and move the anchor forward.

        When ``covered_turn`` is given the anchor follows that turn to its
        current position, since turns may have been deleted while the request
        was out. If it can no longer be found the anchor stays where it was.
        """
        state = self._state_log.load_state()
        turns = self._log.current_turns()
        prior_anchor = resolve_anchor_index(turns, state.current.anchor_index)
        anchor = prior_anchor
        if last_included_index is not None:
            if covered_turn is None:
                covered_index = min(last_included_index, len(turns) - 1)
            else:
                covered_index = locate_turn(turns, covered_turn, last_included_index, floor=prior_anchor)
                if covered_index is None:
                    logger.info(
                        "last summarized turn is gone; keeping prior anchor",
                        extra={"conversation_id": self._log.conversation_id, "hint": last_included_index},
                    )
                    covered_index = prior_anchor
            anchor = max(prior_anchor, covered_index)

        archive = SynopsisArchive(state.archive, limit=self._archive_limit)
        if not state.current.is_empty:
            archive.archive(state.current.text, state.user_demand)

        current = CurrentSynopsis(text=text, anchor_index=anchor, updated_at=datetime.now(timezone.utc))
        self._state_log.write_state(
            SynopsisState(current=current, archive=list(archive.records), user_demand=state.user_demand)
        )

        if anchor >= 0:
            self._log.annotate(anchor, SYNOPSIS_ANNOTATION, text)
            self._log.annotate(anchor, ANCHOR_ANNOTATION, True)
            self._log.persist()

        logger.info(
            "synopsis committed",
            extra={
                "conversation_id": self._log.conversation_id,
                "anchor_index": anchor,
                "archived": len(archive),
            },
        )
        self._emit(current)
        return current

    def add_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def _emit(self, current: CurrentSynopsis) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._log.conversation_id, current)
            except Exception as exc:
                logger.warning(
                    "synopsis listener failed",
                    extra={"conversation_id": self._log.conversation_id, "error": str(exc)},
                )

    def _notify(self, level: str, message: str) -> None:
        if self._notifications is not None:
            self._notifications.notify(self._log.conversation_id, level, message)


__all__ = [
    "CommitListener",
    "CommitOutcome",
    "CommitStatus",
    "PromptPreparer",
    "SynopsisCommitter",
]
