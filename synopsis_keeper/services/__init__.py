"""Service layer components."""

from .conversation import (
    ConversationLog,
    SynopsisManager,
    get_conversation_log,
    get_synopsis_manager,
    get_synopsis_state_log,
    list_conversation_ids,
    schedule_synopsis,
)
from .presets import PresetStore, get_preset_store


__all__ = [
    "ConversationLog",
    "SynopsisManager",
    "get_conversation_log",
    "get_synopsis_manager",
    "get_synopsis_state_log",
    "list_conversation_ids",
    "schedule_synopsis",
    "PresetStore",
    "get_preset_store",
]
