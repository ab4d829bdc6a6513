"""Conversation-facing entry points for the synopsis service."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from ....config import Settings, get_settings
from ....logging_config import logger
from ...presets import PresetStore, get_preset_store
from .archive import SynopsisArchive
from .backends import GenerationBackend, build_generation_backend, build_token_counter
from .committer import CommitListener, CommitOutcome, CommitStatus, SynopsisCommitter
from .estimator import TokenBudgetEstimator, TokenCounter
from .notifications import Notification, NotificationFeed
from .packer import BudgetedPrompt, HistoryPacker, PackingStrategy, turns_since_anchor
from .prompt_builder import (
    InjectionPrompt,
    PromptFrame,
    build_history_reference,
    build_scriptwriter_prompt,
    format_injection,
    strip_end_marker,
)
from .state import (
    CurrentSynopsis,
    SynopsisContext,
    SynopsisRecord,
    SynopsisState,
    resolve_anchor_index,
)
from .synopsis_log import SynopsisStateLog, get_synopsis_state_log
from .trigger import TriggerConfig, TriggerDecision, TriggerEvent, TriggerMode, TriggerPolicy, TriggerSnapshot

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..log import ConversationLog


END_SCAN_WINDOW = 3

STATUS_CLEARED = "Synopsis cleared"
STATUS_UPDATED = "Synopsis updated"
STATUS_NO_TEXT = "No text provided"
STATUS_UNKNOWN = "Unknown action"


def _resolve_conversation_log(conversation_id: str) -> "ConversationLog":
    from ..log import get_conversation_log

    return get_conversation_log(conversation_id)


class SynopsisManager:
    """Owns the per-conversation contexts and wires the synopsis pieces together.

    Trigger checks, packing and commits all go through here; the HTTP routes
    and the background scheduler only call the public coroutines below.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        backend: Optional[GenerationBackend] = None,
        counter: Optional[TokenCounter] = None,
        notifications: Optional[NotificationFeed] = None,
        presets: Optional[PresetStore] = None,
        log_resolver: Callable[[str], "ConversationLog"] = _resolve_conversation_log,
        state_log_resolver: Callable[[str], SynopsisStateLog] = get_synopsis_state_log,
    ) -> None:
        self._settings = settings or get_settings()
        self._custom_backend = backend is not None
        self._custom_counter = counter is not None
        self._backend = backend or build_generation_backend(self._settings)
        self._counter = counter or build_token_counter(self._settings)
        self._notifications = notifications or NotificationFeed()
        self._presets = presets
        self._log_resolver = log_resolver
        self._state_log_resolver = state_log_resolver
        self._contexts: Dict[str, SynopsisContext] = {}
        self._listeners: List[CommitListener] = []
        self._lock = threading.Lock()

    # -- configuration -----------------------------------------------------

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def backend(self) -> GenerationBackend:
        return self._backend

    @property
    def presets(self) -> PresetStore:
        if self._presets is None:
            self._presets = get_preset_store()
        return self._presets

    def configure(self, changes: Dict[str, Any]) -> Settings:
        """Apply runtime setting changes, rebuilding the backend and counter as needed."""
        if not changes:
            return self._settings
        merged = {**self._settings.model_dump(), **changes}
        updated = Settings.model_validate(merged)
        source_changed = (
            updated.synopsis_source != self._settings.synopsis_source
            or updated.local_base_url != self._settings.local_base_url
            or updated.local_model != self._settings.local_model
            or updated.summarizer_model != self._settings.summarizer_model
        )
        counter_changed = (
            updated.tokenizer_encoding != self._settings.tokenizer_encoding
            or updated.synopsis_context_size != self._settings.synopsis_context_size
        )
        self._settings = updated
        if source_changed and not self._custom_backend:
            self._backend = build_generation_backend(updated)
        if counter_changed and not self._custom_counter:
            self._counter = build_token_counter(updated)
        logger.info("synopsis settings updated", extra={"fields": sorted(changes)})
        return updated

    def policy(self) -> TriggerPolicy:
        return TriggerPolicy(TriggerConfig.from_settings(self._settings))

    def add_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    # -- per-conversation state ---------------------------------------------

    def context(self, conversation_id: str) -> SynopsisContext:
        with self._lock:
            context = self._contexts.get(conversation_id)
            if context is None:
                context = SynopsisContext(conversation_id=conversation_id)
                self._contexts[conversation_id] = context
            return context

    def conversation_log(self, conversation_id: str) -> "ConversationLog":
        return self._log_resolver(conversation_id)

    def _logs(self, conversation_id: str):
        return self._log_resolver(conversation_id), self._state_log_resolver(conversation_id)

    def _committer(self, log: "ConversationLog", state_log: SynopsisStateLog) -> SynopsisCommitter:
        return SynopsisCommitter(
            log,
            state_log,
            self._backend,
            archive_limit=self._settings.synopsis_archive_limit,
            notifications=self._notifications,
            listeners=self._listeners,
        )

    def state(self, conversation_id: str) -> SynopsisState:
        return self._state_log_resolver(conversation_id).load_state()

    def current(self, conversation_id: str) -> CurrentSynopsis:
        return self.state(conversation_id).current

    def anchor_index(self, conversation_id: str) -> int:
        log, state_log = self._logs(conversation_id)
        return resolve_anchor_index(log.current_turns(), state_log.load_state().current.anchor_index)

    def notifications(self, conversation_id: str, limit: int = 20) -> List[Notification]:
        return self._notifications.recent(conversation_id, limit)

    # -- trigger evaluation ------------------------------------------------

    def snapshot(self, conversation_id: str, event: TriggerEvent = TriggerEvent.TURN_RENDERED) -> TriggerSnapshot:
        log, state_log = self._logs(conversation_id)
        state = state_log.load_state()
        turns = log.current_turns()
        return TriggerSnapshot.capture(
            turns,
            resolve_anchor_index(turns, state.current.anchor_index),
            has_synopsis=not state.current.is_empty,
            in_flight=self.context(conversation_id).in_flight,
            streaming=log.is_streaming,
            event=event,
        )

    def evaluate(
        self,
        conversation_id: str,
        *,
        event: TriggerEvent = TriggerEvent.TURN_RENDERED,
        force: bool = False,
    ) -> TriggerDecision:
        return self.policy().evaluate(self.snapshot(conversation_id, event), force=force)

    # -- generation ----------------------------------------------------------

    async def generate(
        self,
        conversation_id: str,
        *,
        force: bool = False,
        event: TriggerEvent = TriggerEvent.MANUAL,
    ) -> CommitOutcome:
        settings = self._settings
        context = self.context(conversation_id)
        log, state_log = self._logs(conversation_id)

        if force and context.cancel_in_flight():
            logger.info("superseded in-flight synopsis request", extra={"conversation_id": conversation_id})

        if not self._backend.is_available():
            if force:
                self._notifications.notify(
                    conversation_id, "warning", f"Synopsis source '{self._backend.name}' is not configured"
                )
                return CommitOutcome(CommitStatus.FAILED, detail="backend unavailable")
            return CommitOutcome(CommitStatus.SKIPPED, detail="backend unavailable")

        if force and log.is_streaming:
            finished = await log.wait_for_stream(timeout=settings.request_timeout_seconds)
            if not finished:
                self._notifications.notify(conversation_id, "warning", "Conversation is still streaming")
                return CommitOutcome(CommitStatus.SKIPPED, detail="stream did not finish")

        decision = self.evaluate(conversation_id, event=event, force=force)
        if not decision:
            logger.debug(
                "synopsis trigger held",
                extra={"conversation_id": conversation_id, "reason": decision.reason},
            )
            status = CommitStatus.REJECTED if context.in_flight else CommitStatus.SKIPPED
            return CommitOutcome(status, detail=decision.reason)

        logger.info(
            "synopsis trigger fired",
            extra={"conversation_id": conversation_id, "gate": decision.gate, "reason": decision.reason},
        )

        async def prepare() -> BudgetedPrompt:
            return await self._build_prompt(log, state_log.load_state())

        override = settings.synopsis_override_response_length
        return await self._committer(log, state_log).run(
            context,
            prepare,
            force=force,
            max_output_tokens=override if override > 0 else None,
        )

    async def _build_prompt(self, log: "ConversationLog", state: SynopsisState) -> BudgetedPrompt:
        settings = self._settings
        estimator = TokenBudgetEstimator(self._counter)
        budget = await estimator.budget_for(settings.synopsis_override_response_length)
        packer = HistoryPacker(
            estimator,
            strategy=PackingStrategy.parse(settings.synopsis_packing_strategy),
            max_turns=settings.synopsis_max_turns_per_request,
            padding=settings.synopsis_token_padding,
        )

        references = await packer.select_history(
            state.archive,
            count=settings.synopsis_history_count,
            budget=budget,
            fraction=settings.synopsis_history_fraction,
        )
        system_prompt = build_scriptwriter_prompt(
            settings.scriptwriter_prompt,
            user_demand=state.user_demand,
            history_reference=build_history_reference(references),
            char_name=log.participant_id,
            user_name=log.user_name,
        )
        frame = PromptFrame(system_prompt=system_prompt, previous_synopsis=state.current.text)

        turns = log.current_turns()
        anchor = resolve_anchor_index(turns, state.current.anchor_index)
        return await packer.pack(turns_since_anchor(turns, anchor), frame, budget)

    async def on_turn_event(self, conversation_id: str) -> Optional[CommitOutcome]:
        """Handle a rendered or changed turn: end-marker scan, then the automatic trigger."""
        log = self._log_resolver(conversation_id)
        if log.is_streaming:
            logger.debug("turn event ignored while streaming", extra={"conversation_id": conversation_id})
            return None
        self.scan_recent_turns(conversation_id)
        if not self._settings.summarization_enabled:
            return None
        return await self.generate(conversation_id, event=TriggerEvent.TURN_RENDERED)

    async def before_user_send(self, conversation_id: str) -> Optional[CommitOutcome]:
        if TriggerConfig.from_settings(self._settings).mode is not TriggerMode.PRESENCE:
            return None
        return await self.generate(conversation_id, event=TriggerEvent.BEFORE_SEND)

    async def force_summarize(self, conversation_id: str) -> str:
        outcome = await self.generate(conversation_id, force=True)
        return outcome.text if outcome.committed else ""

    async def run_command(self, conversation_id: str, action: Optional[str] = None, text: str = "") -> str:
        command = (action or "get").strip().lower()
        if command == "get":
            return self.current(conversation_id).text
        if command == "generate":
            await self.generate(conversation_id, force=True)
            return self.current(conversation_id).text
        if command == "clear":
            self.clear_synopsis(conversation_id)
            return STATUS_CLEARED
        if command == "set":
            if not (text or "").strip():
                return STATUS_NO_TEXT
            self.set_synopsis(conversation_id, text)
            return STATUS_UPDATED
        return STATUS_UNKNOWN

    # -- direct state edits --------------------------------------------------

    def _rewrite(self, conversation_id: str, **changes: Any) -> SynopsisState:
        state_log = self._state_log_resolver(conversation_id)
        state = state_log.load_state()
        current = changes.pop("current", state.current)
        updated = SynopsisState(
            current=current,
            archive=changes.pop("archive", state.archive),
            user_demand=changes.pop("user_demand", state.user_demand),
        )
        state_log.write_state(updated)
        return updated

    def set_synopsis(self, conversation_id: str, text: str) -> CurrentSynopsis:
        """Replace the live synopsis text without moving the anchor."""
        state = self.state(conversation_id)
        current = CurrentSynopsis(
            text=text.strip(),
            anchor_index=state.current.anchor_index,
            updated_at=state.current.updated_at,
        )
        self._rewrite(conversation_id, current=current)
        logger.info("synopsis set manually", extra={"conversation_id": conversation_id})
        return current

    def clear_synopsis(self, conversation_id: str) -> None:
        state = self.state(conversation_id)
        self._rewrite(
            conversation_id,
            current=CurrentSynopsis(text="", anchor_index=state.current.anchor_index),
        )
        logger.info("synopsis cleared", extra={"conversation_id": conversation_id})

    def reset(self, conversation_id: str) -> None:
        """Forget everything stored for a conversation that was reset or completed."""
        self.context(conversation_id).cancel_in_flight()
        self._state_log_resolver(conversation_id).clear()
        self._notifications.clear(conversation_id)
        logger.info("synopsis state reset", extra={"conversation_id": conversation_id})

    def cancel_all(self) -> int:
        with self._lock:
            contexts = list(self._contexts.values())
        cancelled = sum(1 for context in contexts if context.cancel_in_flight())
        if cancelled:
            logger.info("cancelled in-flight synopsis requests", extra={"count": cancelled})
        return cancelled

    def scan_recent_turns(self, conversation_id: str) -> bool:
        """Strip the end marker from the newest turns; archive and clear the synopsis if found."""
        log, state_log = self._logs(conversation_id)
        turns = log.current_turns()
        ended = False
        for index in range(max(len(turns) - END_SCAN_WINDOW, 0), len(turns)):
            cleaned, found = strip_end_marker(turns[index].text)
            if found:
                ended = True
                log.edit_turn(index, cleaned)
        if not ended:
            return False

        state = state_log.load_state()
        archive = SynopsisArchive(state.archive, limit=self._settings.synopsis_archive_limit)
        if not state.current.is_empty:
            archive.archive(state.current.text, state.user_demand)
        state_log.write_state(
            SynopsisState(
                current=CurrentSynopsis(text="", anchor_index=state.current.anchor_index),
                archive=list(archive.records),
                user_demand="",
            )
        )
        self._notifications.notify(conversation_id, "info", "Current synopsis has ended!", title="Synopsis Complete")
        return True

    # -- archive -------------------------------------------------------------

    def list_archive(self, conversation_id: str) -> List[SynopsisRecord]:
        return list(self.state(conversation_id).archive)

    def update_record(self, conversation_id: str, record_id: str, content: str) -> Optional[SynopsisRecord]:
        state = self.state(conversation_id)
        archive = SynopsisArchive(state.archive, limit=self._settings.synopsis_archive_limit)
        record = archive.update(record_id, content)
        if record is not None:
            self._rewrite(conversation_id, archive=list(archive.records))
        return record

    def delete_record(self, conversation_id: str, record_id: str) -> bool:
        state = self.state(conversation_id)
        archive = SynopsisArchive(state.archive, limit=self._settings.synopsis_archive_limit)
        deleted = archive.delete(record_id)
        if deleted:
            self._rewrite(conversation_id, archive=list(archive.records))
        return deleted

    # -- user demand and presets ---------------------------------------------

    def user_demand(self, conversation_id: str) -> str:
        return self.state(conversation_id).user_demand

    def set_user_demand(self, conversation_id: str, demand: str) -> str:
        self._rewrite(conversation_id, user_demand=(demand or "").strip())
        return self.user_demand(conversation_id)

    def apply_preset(self, conversation_id: str, name: str) -> Optional[str]:
        content = self.presets.get(name)
        if content is None:
            return None
        return self.set_user_demand(conversation_id, content)

    # -- injection -----------------------------------------------------------

    def injection(self, conversation_id: str) -> InjectionPrompt:
        settings = self._settings
        log = self._log_resolver(conversation_id)
        return format_injection(
            self.current(conversation_id).text,
            template=settings.injection_template,
            user_name=log.user_name,
            position=settings.injection_position,
            depth=settings.injection_depth,
            role=settings.injection_role,
        )


_manager: Optional[SynopsisManager] = None
_manager_lock = threading.Lock()


def get_synopsis_manager() -> SynopsisManager:
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = SynopsisManager()
        return _manager


__all__ = [
    "END_SCAN_WINDOW",
    "STATUS_CLEARED",
    "STATUS_NO_TEXT",
    "STATUS_UNKNOWN",
    "STATUS_UPDATED",
    "SynopsisManager",
    "get_synopsis_manager",
]
