from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..models import (
    ArchiveRecordPayload,
    ArchiveResponse,
    ArchiveUpdateRequest,
    CommitOutcomeResponse,
    ForceSummarizeResponse,
    InjectionResponse,
    NotificationPayload,
    NotificationsResponse,
    PresetApplyRequest,
    PresetsResponse,
    PresetStoreRequest,
    SynopsisCommandRequest,
    SynopsisCommandResponse,
    SynopsisResponse,
    SynopsisSettingsPayload,
    SynopsisSettingsResponse,
    TriggerDecisionResponse,
    UserDemandRequest,
    UserDemandResponse,
)
from ..services import SynopsisManager, get_synopsis_manager
from ..services.conversation.summarization import CommitOutcome, CommitStatus
from ..services.conversation.summarization.state import SynopsisRecord
from ..services.conversation.summarization.trigger import TriggerEvent

router = APIRouter(prefix="/synopsis", tags=["synopsis"])


def outcome_response(outcome: CommitOutcome) -> CommitOutcomeResponse:
    return CommitOutcomeResponse(
        ok=outcome.status is not CommitStatus.FAILED,
        status=outcome.status.value,
        text=outcome.text,
        anchor_index=outcome.anchor_index,
        detail=outcome.detail,
    )


def _record_payload(record: SynopsisRecord) -> ArchiveRecordPayload:
    return ArchiveRecordPayload(**record.to_dict())


def _settings_response(manager: SynopsisManager) -> SynopsisSettingsResponse:
    return SynopsisSettingsResponse.model_validate(manager.settings.model_dump())


@router.get("/settings", response_model=SynopsisSettingsResponse)
def get_synopsis_settings(manager: SynopsisManager = Depends(get_synopsis_manager)) -> SynopsisSettingsResponse:
    return _settings_response(manager)


@router.patch("/settings", response_model=SynopsisSettingsResponse)
def update_synopsis_settings(
    payload: SynopsisSettingsPayload,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> SynopsisSettingsResponse:
    manager.configure(payload.model_dump(exclude_none=True))
    return _settings_response(manager)


@router.get("/presets", response_model=PresetsResponse)
def list_presets(manager: SynopsisManager = Depends(get_synopsis_manager)) -> PresetsResponse:
    return PresetsResponse(presets=manager.presets.list_presets())


@router.post("/presets", response_model=PresetsResponse)
def store_preset(
    payload: PresetStoreRequest,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> PresetsResponse:
    try:
        manager.presets.store(payload.name, payload.content)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return PresetsResponse(presets=manager.presets.list_presets())


@router.delete("/presets/{name}", response_model=PresetsResponse)
def delete_preset(name: str, manager: SynopsisManager = Depends(get_synopsis_manager)) -> PresetsResponse:
    if not manager.presets.delete(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Preset '{name}' not found")
    return PresetsResponse(presets=manager.presets.list_presets())


@router.get("/{conversation_id}", response_model=SynopsisResponse)
def get_synopsis(conversation_id: str, manager: SynopsisManager = Depends(get_synopsis_manager)) -> SynopsisResponse:
    state = manager.state(conversation_id)
    context = manager.context(conversation_id)
    current = state.current
    return SynopsisResponse(
        conversation_id=conversation_id,
        text=current.text,
        anchor_index=manager.anchor_index(conversation_id),
        updated_at=current.updated_at.isoformat() if current.updated_at else None,
        user_demand=state.user_demand,
        in_flight=context.in_flight,
        phase=context.phase.value,
    )


@router.post("/{conversation_id}/command", response_model=SynopsisCommandResponse)
async def run_command(
    conversation_id: str,
    payload: SynopsisCommandRequest,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> SynopsisCommandResponse:
    result = await manager.run_command(conversation_id, payload.action, payload.text)
    return SynopsisCommandResponse(result=result)


@router.post("/{conversation_id}/generate", response_model=CommitOutcomeResponse)
async def generate_synopsis(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> CommitOutcomeResponse:
    outcome = await manager.generate(conversation_id, force=True)
    return outcome_response(outcome)


@router.post("/{conversation_id}/force", response_model=ForceSummarizeResponse)
async def force_summarize(
    conversation_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> ForceSummarizeResponse:
    text = await manager.force_summarize(conversation_id)
    return ForceSummarizeResponse(ok=bool(text), text=text)


@router.get("/{conversation_id}/trigger", response_model=TriggerDecisionResponse)
def preview_trigger(
    conversation_id: str,
    event: TriggerEvent = TriggerEvent.TURN_RENDERED,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> TriggerDecisionResponse:
    decision = manager.evaluate(conversation_id, event=event)
    return TriggerDecisionResponse(fire=decision.fire, gate=decision.gate, reason=decision.reason)


@router.get("/{conversation_id}/archive", response_model=ArchiveResponse)
def list_archive(conversation_id: str, manager: SynopsisManager = Depends(get_synopsis_manager)) -> ArchiveResponse:
    return ArchiveResponse(records=[_record_payload(record) for record in manager.list_archive(conversation_id)])


@router.patch("/{conversation_id}/archive/{record_id}", response_model=ArchiveRecordPayload)
def update_archive_record(
    conversation_id: str,
    record_id: str,
    payload: ArchiveUpdateRequest,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> ArchiveRecordPayload:
    record = manager.update_record(conversation_id, record_id, payload.content)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Synopsis {record_id} not found")
    return _record_payload(record)


@router.delete("/{conversation_id}/archive/{record_id}", response_model=ArchiveResponse)
def delete_archive_record(
    conversation_id: str,
    record_id: str,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> ArchiveResponse:
    if not manager.delete_record(conversation_id, record_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Synopsis {record_id} not found")
    return ArchiveResponse(records=[_record_payload(record) for record in manager.list_archive(conversation_id)])


@router.get("/{conversation_id}/demand", response_model=UserDemandResponse)
def get_user_demand(conversation_id: str, manager: SynopsisManager = Depends(get_synopsis_manager)) -> UserDemandResponse:
    return UserDemandResponse(demand=manager.user_demand(conversation_id))


@router.put("/{conversation_id}/demand", response_model=UserDemandResponse)
def set_user_demand(
    conversation_id: str,
    payload: UserDemandRequest,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> UserDemandResponse:
    return UserDemandResponse(demand=manager.set_user_demand(conversation_id, payload.demand))


@router.post("/{conversation_id}/demand/preset", response_model=UserDemandResponse)
def apply_preset(
    conversation_id: str,
    payload: PresetApplyRequest,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> UserDemandResponse:
    demand = manager.apply_preset(conversation_id, payload.name)
    if demand is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Preset '{payload.name}' not found")
    return UserDemandResponse(demand=demand)


@router.get("/{conversation_id}/injection", response_model=InjectionResponse)
def get_injection(conversation_id: str, manager: SynopsisManager = Depends(get_synopsis_manager)) -> InjectionResponse:
    injection = manager.injection(conversation_id)
    return InjectionResponse(
        text=injection.text,
        position=injection.position,
        depth=injection.depth,
        role=injection.role,
    )


@router.get("/{conversation_id}/notifications", response_model=NotificationsResponse)
def list_notifications(
    conversation_id: str,
    limit: int = 20,
    manager: SynopsisManager = Depends(get_synopsis_manager),
) -> NotificationsResponse:
    return NotificationsResponse(
        notifications=[
            NotificationPayload(**notification.to_dict())
            for notification in manager.notifications(conversation_id, limit)
        ]
    )


__all__ = ["outcome_response", "router"]
