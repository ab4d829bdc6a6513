from __future__ import annotations

import asyncio
from typing import Set

from ....logging_config import logger
from .manager import get_synopsis_manager

_pending: Set[str] = set()
_running: Set[str] = set()


def schedule_synopsis(conversation_id: str) -> None:
    """Schedule a background synopsis check for a conversation if not already queued."""
    _pending.add(conversation_id)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug(
            "synopsis check skipped (no running event loop)",
            extra={"conversation_id": conversation_id},
        )
        return

    if conversation_id not in _running:
        loop.create_task(_run_worker(conversation_id))


async def _run_worker(conversation_id: str) -> None:
    if conversation_id in _running:
        return

    _running.add(conversation_id)
    try:
        while conversation_id in _pending:
            _pending.discard(conversation_id)
            try:
                await get_synopsis_manager().on_turn_event(conversation_id)
            except Exception as exc:  # pragma: no cover - defensive
                logger.error(
                    "synopsis worker failed",
                    extra={"error": str(exc), "conversation_id": conversation_id},
                )
    finally:
        _running.discard(conversation_id)


__all__ = ["schedule_synopsis"]
