"""Conversation-related service helpers."""

from .log import ConversationLog, get_conversation_log, list_conversation_ids
from .summarization import SynopsisManager, get_synopsis_manager, get_synopsis_state_log, schedule_synopsis

__all__ = [
    "ConversationLog",
    "SynopsisManager",
    "get_conversation_log",
    "get_synopsis_manager",
    "get_synopsis_state_log",
    "list_conversation_ids",
    "schedule_synopsis",
]
