from __future__ import annotations

import asyncio
import json
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ...config import get_settings
from ...logging_config import logger
from .summarization.state import ContextFingerprint, Turn


DEFAULT_BRANCH = "main"
DEFAULT_PARTICIPANT = "Character"
DEFAULT_USER_NAME = "User"


def _slugify(name: str) -> str:
    slug = "".join(ch.lower() if ch.isalnum() else "-" for ch in name.strip()).strip("-")
    while "--" in slug:
        slug = slug.replace("--", "-")
    return slug or "conversation"


class ConversationLog:
    """Host-owned conversation: ordered turns with per-turn annotation slots.

    The synopsis core reads turns by index and only writes its own
    annotations. Every read returns copies, so nothing outside the log holds
    references into it across an await.
    """

    def __init__(
        self,
        conversation_id: str,
        path: Optional[Path] = None,
        *,
        participant_id: str = DEFAULT_PARTICIPANT,
        user_name: str = DEFAULT_USER_NAME,
        notify: bool = False,
    ) -> None:
        self._conversation_id = conversation_id
        self._path = path
        self._notify = notify
        self._lock = threading.Lock()
        self._turns: List[Turn] = []
        self._branch_id = DEFAULT_BRANCH
        self._participant_id = participant_id
        self._user_name = user_name
        self._streaming = False
        self._stream_idle = asyncio.Event()
        self._stream_idle.set()
        self._ensure_directory()
        self._load()

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def participant_id(self) -> str:
        with self._lock:
            return self._participant_id

    @property
    def user_name(self) -> str:
        with self._lock:
            return self._user_name

    @property
    def branch_id(self) -> str:
        with self._lock:
            return self._branch_id

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def _ensure_directory(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("conversation log directory creation failed", extra={"error": str(exc)})

    def _load(self) -> None:
        if self._path is None:
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return
        except Exception as exc:  # pragma: no cover - defensive
            logger.error(
                "conversation log read failed", extra={"error": str(exc), "path": str(self._path)}
            )
            return
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning(
                "conversation log corrupt; starting empty",
                extra={"error": str(exc), "path": str(self._path)},
            )
            return
        turns = data.get("turns") if isinstance(data, dict) else None
        if isinstance(turns, list):
            self._turns = [Turn.from_dict(item) for item in turns if isinstance(item, dict)]
        self._branch_id = str(data.get("branch_id") or DEFAULT_BRANCH)
        self._participant_id = str(data.get("participant_id") or self._participant_id)
        self._user_name = str(data.get("user_name") or self._user_name)

    # -- reads -------------------------------------------------------------

    def current_turns(self) -> List[Turn]:
        with self._lock:
            return [turn.copy() for turn in self._turns]

    def turn_count(self) -> int:
        with self._lock:
            return len(self._turns)

    def current_fingerprint(self) -> ContextFingerprint:
        with self._lock:
            return ContextFingerprint(
                conversation_id=self._conversation_id,
                branch_id=self._branch_id,
                participant_id=self._participant_id,
            )

    # -- core writes -------------------------------------------------------

    def annotate(self, turn_index: int, key: str, value: Any) -> bool:
        with self._lock:
            if not 0 <= turn_index < len(self._turns):
                logger.debug(
                    "annotation skipped; turn index out of range",
                    extra={"index": turn_index, "turns": len(self._turns)},
                )
                return False
            self._turns[turn_index].annotations[key] = value
            return True

    def persist(self) -> None:
        """Write the log to disk. Failures are logged, never raised."""
        if self._path is None:
            return
        with self._lock:
            payload = {
                "conversation_id": self._conversation_id,
                "branch_id": self._branch_id,
                "participant_id": self._participant_id,
                "user_name": self._user_name,
                "turns": [turn.to_dict() for turn in self._turns],
            }
        temp_path = self._path.with_suffix(".tmp")
        try:
            temp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            temp_path.replace(self._path)
        except Exception as exc:
            logger.error(
                "conversation log persist failed",
                extra={"error": str(exc), "path": str(self._path)},
            )

    # -- host mutations ----------------------------------------------------

    def append_turn(self, author: str, text: str, *, is_system: bool = False) -> int:
        with self._lock:
            self._turns.append(Turn(author=author, text=str(text), is_system=is_system))
            index = len(self._turns) - 1
        self.persist()
        self._notify_summarization()
        return index

    def edit_turn(self, turn_index: int, text: str) -> bool:
        with self._lock:
            if not 0 <= turn_index < len(self._turns):
                return False
            self._turns[turn_index].text = str(text)
        self.persist()
        self._notify_summarization()
        return True

    def delete_turn(self, turn_index: int) -> bool:
        with self._lock:
            if not 0 <= turn_index < len(self._turns):
                return False
            del self._turns[turn_index]
        self.persist()
        self._notify_summarization()
        return True

    def switch_branch(self, branch_id: str, turns: Optional[Iterable[Turn]] = None) -> None:
        with self._lock:
            self._branch_id = branch_id
            if turns is not None:
                self._turns = [turn.copy() for turn in turns]
        logger.info(
            "conversation branch switched",
            extra={"conversation_id": self._conversation_id, "branch_id": branch_id},
        )
        self.persist()

    def set_participant(self, participant_id: str, *, user_name: Optional[str] = None) -> None:
        with self._lock:
            self._participant_id = participant_id
            if user_name:
                self._user_name = user_name
        self.persist()

    def begin_streaming(self) -> None:
        self._streaming = True
        self._stream_idle.clear()

    def finish_streaming(self) -> None:
        self._streaming = False
        self._stream_idle.set()

    async def wait_for_stream(self, timeout: Optional[float] = None) -> bool:
        """Wait until no host stream is running. Returns False on timeout."""
        if not self._streaming:
            return True
        try:
            await asyncio.wait_for(self._stream_idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def clear(self) -> None:
        """Reset the conversation. A fresh branch id invalidates any in-flight synopsis."""
        with self._lock:
            self._turns = []
            self._branch_id = f"{DEFAULT_BRANCH}-{uuid.uuid4().hex[:8]}"
        self.persist()

    def _notify_summarization(self) -> None:
        if not self._notify:
            return

        try:
            from .summarization import get_synopsis_manager, schedule_synopsis
        except Exception as exc:  # pragma: no cover - defensive
            logger.debug(
                "synopsis scheduler unavailable",
                extra={"error": str(exc)},
            )
            return

        # Runtime settings can differ from the environment.
        if not get_synopsis_manager().settings.summarization_enabled:
            return

        try:
            schedule_synopsis(self._conversation_id)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning(
                "failed to schedule synopsis",
                extra={"error": str(exc), "conversation_id": self._conversation_id},
            )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "conversation_id": self._conversation_id,
                "branch_id": self._branch_id,
                "participant_id": self._participant_id,
                "user_name": self._user_name,
                "streaming": self._streaming,
                "turns": [turn.to_dict() for turn in self._turns],
            }


_conversation_logs: Dict[str, ConversationLog] = {}
_registry_lock = threading.Lock()


def get_conversation_log(conversation_id: str) -> ConversationLog:
    with _registry_lock:
        log = _conversation_logs.get(conversation_id)
        if log is None:
            settings = get_settings()
            path = Path(settings.data_dir) / "conversations" / f"{_slugify(conversation_id)}.json"
            log = ConversationLog(conversation_id, path, notify=True)
            _conversation_logs[conversation_id] = log
        return log


def list_conversation_ids() -> List[str]:
    with _registry_lock:
        return sorted(_conversation_logs)


__all__ = ["ConversationLog", "get_conversation_log", "list_conversation_ids"]
