from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..models import (
    AppendTurnRequest,
    AppendTurnResponse,
    CommitOutcomeResponse,
    ConversationClearResponse,
    ConversationListResponse,
    ConversationResponse,
    EditTurnRequest,
    ParticipantRequest,
    SwitchBranchRequest,
)
from ..services import ConversationLog, SynopsisManager, get_synopsis_manager, list_conversation_ids
from ..services.conversation.summarization.state import Turn
from .synopsis import outcome_response

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _conversation_log(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> ConversationLog:
    return manager.conversation_log(conversation_id)


def _snapshot(log: ConversationLog) -> ConversationResponse:
    return ConversationResponse(**log.snapshot())


def _missing_turn(index: int) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Turn {index} not found")


@router.get("", response_model=ConversationListResponse)
def list_conversations() -> ConversationListResponse:
    return ConversationListResponse(conversations=list_conversation_ids())


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(log: ConversationLog = Depends(_conversation_log)) -> ConversationResponse:
    return _snapshot(log)


# Turn mutations are async so the synopsis scheduler sees the running loop.
@router.post("/{conversation_id}/turns", response_model=AppendTurnResponse)
async def append_turn(
    payload: AppendTurnRequest,
    log: ConversationLog = Depends(_conversation_log),
) -> AppendTurnResponse:
    index = log.append_turn(payload.author, payload.text, is_system=payload.is_system)
    return AppendTurnResponse(index=index)


@router.patch("/{conversation_id}/turns/{index}", response_model=ConversationResponse)
async def edit_turn(
    index: int,
    payload: EditTurnRequest,
    log: ConversationLog = Depends(_conversation_log),
) -> ConversationResponse:
    if not log.edit_turn(index, payload.text):
        raise _missing_turn(index)
    return _snapshot(log)


@router.delete("/{conversation_id}/turns/{index}", response_model=ConversationResponse)
async def delete_turn(index: int, log: ConversationLog = Depends(_conversation_log)) -> ConversationResponse:
    if not log.delete_turn(index):
        raise _missing_turn(index)
    return _snapshot(log)


@router.post("/{conversation_id}/branch", response_model=ConversationResponse)
async def switch_branch(
    payload: SwitchBranchRequest,
    log: ConversationLog = Depends(_conversation_log),
) -> ConversationResponse:
    turns = None
    if payload.turns is not None:
        turns = [Turn.from_dict(turn.model_dump()) for turn in payload.turns]
    log.switch_branch(payload.branch_id, turns)
    return _snapshot(log)


@router.post("/{conversation_id}/participant", response_model=ConversationResponse)
async def set_participant(
    payload: ParticipantRequest,
    log: ConversationLog = Depends(_conversation_log),
) -> ConversationResponse:
    log.set_participant(payload.participant_id, user_name=payload.user_name)
    return _snapshot(log)


@router.post("/{conversation_id}/stream/begin", response_model=ConversationResponse)
async def begin_stream(log: ConversationLog = Depends(_conversation_log)) -> ConversationResponse:
    log.begin_streaming()
    return _snapshot(log)


@router.post("/{conversation_id}/stream/finish", response_model=ConversationResponse)
async def finish_stream(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
    log: ConversationLog = Depends(_conversation_log),
) -> ConversationResponse:
    log.finish_streaming()
    await manager.on_turn_event(conversation_id)
    return _snapshot(log)


@router.post("/{conversation_id}/before-send", response_model=CommitOutcomeResponse)
async def before_send(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> CommitOutcomeResponse:
    outcome = await manager.before_user_send(conversation_id)
    if outcome is None:
        return CommitOutcomeResponse(ok=True, status="skipped", detail="emptiness check disabled in this mode")
    return outcome_response(outcome)


@router.delete("/{conversation_id}", response_model=ConversationClearResponse)
async def clear_conversation(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
    log: ConversationLog = Depends(_conversation_log),
) -> ConversationClearResponse:
    log.clear()
    manager.reset(conversation_id)
    return ConversationClearResponse()


__all__ = ["router"]
