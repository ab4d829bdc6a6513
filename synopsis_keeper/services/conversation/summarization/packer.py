"""Budget-aware selection of the conversation slice sent to the summarizer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ....logging_config import logger
from .estimator import PinnedEstimator, TokenBudgetEstimator
from .prompt_builder import PromptFrame, SummaryPrompt, format_turn_line
from .state import SynopsisRecord, Turn


IndexedTurn = Tuple[int, Turn]


class PackingStrategy(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"

    @classmethod
    def parse(cls, value: str) -> "PackingStrategy":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            logger.warning("unknown packing strategy; using forward", extra={"strategy": value})
            return cls.FORWARD


@dataclass(frozen=True)
class BudgetedPrompt:
    """Packed request text and the last conversation turn it covers."""

    text: str
    last_included_index: Optional[int]
    messages: List[Dict[str, str]] = field(default_factory=list)
    included_indices: Tuple[int, ...] = ()
    tokens: int = 0
    last_included_turn: Optional[Turn] = None

    @classmethod
    def empty(cls) -> "BudgetedPrompt":
        return cls(text="", last_included_index=None)

    @property
    def is_empty(self) -> bool:
        return self.last_included_index is None


def turns_since_anchor(turns: Sequence[Turn], anchor_index: int) -> List[IndexedTurn]:
    start = max(anchor_index + 1, 0)
    return [(index, turns[index]) for index in range(start, len(turns))]


class HistoryPacker:
    """Greedy packer that keeps every assembled request inside the budget.

    Both strategies re-measure the whole assembled text after each tentative
    addition; the turn that would push the request over budget is dropped and
    packing stops. A measurement equal to the budget is accepted.
    """

    def __init__(
        self,
        estimator: TokenBudgetEstimator,
        *,
        strategy: PackingStrategy = PackingStrategy.FORWARD,
        max_turns: int = 0,
        padding: int = 0,
    ) -> None:
        self._estimator = estimator
        self._strategy = strategy
        self._max_turns = max(max_turns, 0)
        self._padding = max(padding, 0)

    @property
    def strategy(self) -> PackingStrategy:
        return self._strategy

    async def pack(self, pending: Sequence[IndexedTurn], frame: PromptFrame, budget: int) -> BudgetedPrompt:
        if not pending:
            return BudgetedPrompt.empty()

        measurer = self._estimator.pinned()
        if self._strategy is PackingStrategy.REVERSE:
            selected, tokens = await self._pack_reverse(pending, frame, budget, measurer)
        else:
            selected, tokens = await self._pack_forward(pending, frame, budget, measurer)

        if measurer.degraded:
            selected, tokens = await self._settle_degraded(selected, frame, budget, measurer)

        if not selected:
            logger.info(
                "no turns fit the synopsis budget",
                extra={"budget": budget, "pending": len(pending), "strategy": self._strategy.value},
            )
            return BudgetedPrompt.empty()

        prompt = self._render(frame, selected)
        return BudgetedPrompt(
            text=prompt.text,
            last_included_index=selected[-1][0],
            messages=prompt.as_chat_messages(),
            included_indices=tuple(index for index, _ in selected),
            tokens=tokens,
            last_included_turn=selected[-1][1].copy(),
        )

    async def _pack_forward(
        self,
        pending: Sequence[IndexedTurn],
        frame: PromptFrame,
        budget: int,
        measurer: PinnedEstimator,
    ) -> Tuple[List[IndexedTurn], int]:
        selected: List[IndexedTurn] = []
        accepted_cost = 0
        for item in pending:
            if self._max_turns and len(selected) >= self._max_turns:
                break
            candidate = selected + [item]
            cost = await measurer.measure(self._render(frame, candidate).text, self._padding)
            if cost > budget:
                break
            selected, accepted_cost = candidate, cost
        return selected, accepted_cost

    async def _pack_reverse(
        self,
        pending: Sequence[IndexedTurn],
        frame: PromptFrame,
        budget: int,
        measurer: PinnedEstimator,
    ) -> Tuple[List[IndexedTurn], int]:
        selected: List[IndexedTurn] = []
        accepted_cost = 0
        for item in reversed(pending):
            if self._max_turns and len(selected) >= self._max_turns:
                break
            candidate = [item] + selected
            cost = await measurer.measure(self._render(frame, candidate).text, self._padding)
            if cost > budget:
                # The overshooting turn is dropped rather than kept.
                break
            selected, accepted_cost = candidate, cost
        return selected, accepted_cost

    async def _settle_degraded(
        self,
        selected: List[IndexedTurn],
        frame: PromptFrame,
        budget: int,
        measurer: PinnedEstimator,
    ) -> Tuple[List[IndexedTurn], int]:
        """Re-check the selection under the fallback strategy and trim until it fits."""
        trimmed = list(selected)
        while trimmed:
            cost = await measurer.measure(self._render(frame, trimmed).text, self._padding)
            if cost <= budget:
                return trimmed, cost
            if self._strategy is PackingStrategy.REVERSE:
                trimmed.pop(0)
            else:
                trimmed.pop()
        return trimmed, 0

    def _render(self, frame: PromptFrame, selected: Sequence[IndexedTurn]) -> SummaryPrompt:
        return frame.render([format_turn_line(index, turn) for index, turn in selected])

    async def select_history(
        self,
        records: Sequence[SynopsisRecord],
        *,
        count: int,
        budget: int,
        fraction: float,
    ) -> List[SynopsisRecord]:
        """Newest-first prefix of archived synopses that fits the reserved history budget."""
        if count <= 0 or not records or fraction <= 0:
            return []
        reserved = math.floor(budget * fraction)
        used = 0
        selected: List[SynopsisRecord] = []
        for record in records[:count]:
            cost = await self._estimator.estimate(record.content)
            if used + cost > reserved:
                break
            used += cost
            selected.append(record)
        return selected


__all__ = [
    "BudgetedPrompt",
    "HistoryPacker",
    "IndexedTurn",
    "PackingStrategy",
    "turns_since_anchor",
]
