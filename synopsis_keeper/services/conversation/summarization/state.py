from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


SYNOPSIS_ANNOTATION = "synopsis"
ANCHOR_ANNOTATION = "synopsis_anchor"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Turn:
    """Snapshot of a single conversation turn."""

    author: str
    text: str
    is_system: bool = False
    annotations: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_anchor(self) -> bool:
        return bool(self.annotations.get(ANCHOR_ANNOTATION))

    def copy(self) -> "Turn":
        return replace(self, annotations=dict(self.annotations))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author": self.author,
            "text": self.text,
            "is_system": self.is_system,
            "annotations": dict(self.annotations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        annotations = data.get("annotations")
        return cls(
            author=str(data.get("author") or ""),
            text=str(data.get("text") or ""),
            is_system=bool(data.get("is_system", False)),
            annotations=dict(annotations) if isinstance(annotations, dict) else {},
        )


@dataclass(frozen=True)
class ContextFingerprint:
    """Identity of the conversation a generation request was issued against."""

    conversation_id: str
    branch_id: str
    participant_id: str


@dataclass(frozen=True)
class SynopsisRecord:
    """An archived synopsis."""

    id: str
    content: str
    created_at: datetime
    demand: Optional[str] = None

    @classmethod
    def create(cls, content: str, demand: Optional[str] = None) -> "SynopsisRecord":
        return cls(id=uuid.uuid4().hex[:12], content=content, created_at=_utc_now(), demand=demand or None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "demand": self.demand,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["SynopsisRecord"]:
        record_id = data.get("id")
        content = data.get("content")
        if not isinstance(record_id, str) or not isinstance(content, str):
            return None
        created_raw = data.get("created_at")
        try:
            created_at = datetime.fromisoformat(created_raw) if isinstance(created_raw, str) else _utc_now()
        except ValueError:
            created_at = _utc_now()
        demand = data.get("demand")
        return cls(
            id=record_id,
            content=content,
            created_at=created_at,
            demand=demand if isinstance(demand, str) and demand else None,
        )


@dataclass(frozen=True)
class CurrentSynopsis:
    """Live synopsis text and the turn index after which it became valid."""

    text: str = ""
    anchor_index: int = -1
    updated_at: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass
class SynopsisState:
    """Persisted synopsis state for one conversation."""

    current: CurrentSynopsis = field(default_factory=CurrentSynopsis)
    archive: List[SynopsisRecord] = field(default_factory=list)
    user_demand: str = ""

    @classmethod
    def empty(cls) -> "SynopsisState":
        return cls()


def resolve_anchor_index(turns: List[Turn], stored_anchor: int) -> int:
    """Re-derive the anchor from turn annotations, falling back to the stored index."""
    for index in range(len(turns) - 1, -1, -1):
        if turns[index].is_anchor:
            return index
    return min(stored_anchor, len(turns) - 1)


def locate_turn(turns: List[Turn], target: Turn, hint: int, *, floor: int = -1) -> Optional[int]:
    """Find ``target`` at or before ``hint``, searching back to just after ``floor``."""
    for index in range(min(hint, len(turns) - 1), floor, -1):
        turn = turns[index]
        if (turn.author, turn.text, turn.is_system) == (target.author, target.text, target.is_system):
            return index
    return None


class CommitPhase(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    COMMITTING = "committing"
    DISCARDED = "discarded"


class CancellationToken:
    """Cooperative cancellation handle shared with a generation call."""

    def __init__(self) -> None:
        self._cancelled = False
        self._task: Optional[asyncio.Task[Any]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: "asyncio.Task[Any]") -> None:
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


@dataclass
class SynopsisContext:
    """Per-conversation runtime state for the commit cycle."""

    conversation_id: str
    in_flight: bool = False
    phase: CommitPhase = CommitPhase.IDLE
    cancel_token: Optional[CancellationToken] = None
    attempt: int = 0

    def cancel_in_flight(self) -> bool:
        """Cancel the active attempt, if any. Returns True when something was cancelled."""
        token = self.cancel_token
        if not self.in_flight or token is None:
            return False
        token.cancel()
        self.in_flight = False
        self.phase = CommitPhase.IDLE
        return True


__all__ = [
    "ANCHOR_ANNOTATION",
    "SYNOPSIS_ANNOTATION",
    "CancellationToken",
    "CommitPhase",
    "ContextFingerprint",
    "CurrentSynopsis",
    "SynopsisContext",
    "SynopsisRecord",
    "SynopsisState",
    "Turn",
    "locate_turn",
    "resolve_anchor_index",
]
