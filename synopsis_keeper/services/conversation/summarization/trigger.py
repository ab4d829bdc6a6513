"""Decides whether a new synopsis should be generated for a conversation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from ....config import Settings
from ....logging_config import logger
from .state import Turn
from .words import words_in_turns


class TriggerMode(str, Enum):
    INTERVAL = "interval"
    PRESENCE = "presence"

    @classmethod
    def parse(cls, value: str) -> "TriggerMode":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            logger.warning("unknown trigger mode; using interval", extra={"mode": value})
            return cls.INTERVAL


class TriggerEvent(str, Enum):
    TURN_RENDERED = "turn_rendered"
    BEFORE_SEND = "before_send"
    MANUAL = "manual"


@dataclass(frozen=True)
class TriggerSnapshot:
    """Conversation measurements the policy decides on."""

    turns_since_anchor: int
    words_since_anchor: int
    has_synopsis: bool
    in_flight: bool = False
    streaming: bool = False
    event: TriggerEvent = TriggerEvent.TURN_RENDERED

    @classmethod
    def capture(
        cls,
        turns: Sequence[Turn],
        anchor_index: int,
        *,
        has_synopsis: bool,
        in_flight: bool = False,
        streaming: bool = False,
        event: TriggerEvent = TriggerEvent.TURN_RENDERED,
    ) -> "TriggerSnapshot":
        pending = [turn for turn in turns[max(anchor_index + 1, 0):] if not turn.is_system]
        return cls(
            turns_since_anchor=len(pending),
            words_since_anchor=words_in_turns(pending),
            has_synopsis=has_synopsis,
            in_flight=in_flight,
            streaming=streaming,
            event=event,
        )


@dataclass(frozen=True)
class TriggerConfig:
    mode: TriggerMode = TriggerMode.INTERVAL
    interval: int = 0
    force_words: int = 0
    check_empty: bool = True
    frozen: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "TriggerConfig":
        return cls(
            mode=TriggerMode.parse(settings.synopsis_trigger_mode),
            interval=max(settings.synopsis_interval, 0),
            force_words=max(settings.synopsis_force_words, 0),
            check_empty=settings.synopsis_check_empty,
            frozen=settings.synopsis_frozen,
        )


@dataclass(frozen=True)
class TriggerDecision:
    fire: bool
    gate: Optional[str]
    reason: str

    def __bool__(self) -> bool:
        return self.fire


def _hold(reason: str) -> TriggerDecision:
    return TriggerDecision(fire=False, gate=None, reason=reason)


class TriggerPolicy:
    """Interval, word-budget and emptiness gates composed by OR.

    ``evaluate`` is a pure function of the snapshot and config, so repeated
    calls without a log mutation in between give the same answer.
    """

    def __init__(self, config: TriggerConfig) -> None:
        self._config = config

    @property
    def config(self) -> TriggerConfig:
        return self._config

    def evaluate(self, snapshot: TriggerSnapshot, *, force: bool = False) -> TriggerDecision:
        config = self._config
        if snapshot.in_flight:
            return _hold("generation already in flight")
        if config.frozen:
            return _hold("synopsis frozen")
        if snapshot.streaming:
            return _hold("conversation is still streaming")
        if force:
            return TriggerDecision(fire=True, gate="force", reason="forced request")

        if config.mode is TriggerMode.PRESENCE:
            return self._evaluate_presence(snapshot)
        return self._evaluate_interval(snapshot)

    def _evaluate_interval(self, snapshot: TriggerSnapshot) -> TriggerDecision:
        config = self._config
        if config.interval <= 0:
            return _hold("automatic triggering disabled")
        if snapshot.turns_since_anchor <= 0:
            return _hold("no pending turns")
        if snapshot.turns_since_anchor >= config.interval:
            return TriggerDecision(
                fire=True,
                gate="interval",
                reason=f"{snapshot.turns_since_anchor} turns since anchor (interval {config.interval})",
            )
        return self._word_gate(snapshot) or _hold("thresholds not reached")

    def _evaluate_presence(self, snapshot: TriggerSnapshot) -> TriggerDecision:
        config = self._config
        if snapshot.turns_since_anchor <= 0:
            return _hold("no pending turns")
        if config.check_empty and not snapshot.has_synopsis:
            return TriggerDecision(fire=True, gate="empty", reason="no live synopsis")
        return self._word_gate(snapshot) or _hold("synopsis present")

    def _word_gate(self, snapshot: TriggerSnapshot) -> TriggerDecision:
        threshold = self._config.force_words
        if threshold > 0 and snapshot.words_since_anchor >= threshold:
            return TriggerDecision(
                fire=True,
                gate="words",
                reason=f"{snapshot.words_since_anchor} words since anchor (threshold {threshold})",
            )
        return _hold("word threshold not reached")


__all__ = [
    "TriggerConfig",
    "TriggerDecision",
    "TriggerEvent",
    "TriggerMode",
    "TriggerPolicy",
    "TriggerSnapshot",
]
