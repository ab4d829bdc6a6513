from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SynopsisResponse(BaseModel):
    conversation_id: str
    text: str = ""
    anchor_index: int = -1
    updated_at: Optional[str] = None
    user_demand: str = ""
    in_flight: bool = False
    phase: str = "idle"


class SynopsisCommandRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str = Field(default="get")
    text: str = Field(default="")


class SynopsisCommandResponse(BaseModel):
    ok: bool = True
    result: str = ""


class CommitOutcomeResponse(BaseModel):
    ok: bool
    status: str
    text: str = ""
    anchor_index: Optional[int] = None
    detail: str = ""


class ForceSummarizeResponse(BaseModel):
    ok: bool
    text: str = ""


class TriggerDecisionResponse(BaseModel):
    fire: bool
    gate: Optional[str] = None
    reason: str = ""


class ArchiveRecordPayload(BaseModel):
    id: str
    content: str
    created_at: str
    demand: Optional[str] = None


class ArchiveResponse(BaseModel):
    records: List[ArchiveRecordPayload] = Field(default_factory=list)


class ArchiveUpdateRequest(BaseModel):
    content: str = Field(..., min_length=1)


class UserDemandRequest(BaseModel):
    demand: str = Field(default="")


class UserDemandResponse(BaseModel):
    ok: bool = True
    demand: str = ""


class PresetsResponse(BaseModel):
    presets: Dict[str, str] = Field(default_factory=dict)


class PresetStoreRequest(BaseModel):
    name: str = Field(..., min_length=1)
    content: str = Field(default="")


class PresetApplyRequest(BaseModel):
    name: str = Field(..., min_length=1)


class InjectionResponse(BaseModel):
    text: str = ""
    position: str
    depth: int
    role: str


class NotificationPayload(BaseModel):
    level: str
    title: str
    message: str
    created_at: str


class NotificationsResponse(BaseModel):
    notifications: List[NotificationPayload] = Field(default_factory=list)


class SynopsisSettingsPayload(BaseModel):
    """Runtime-adjustable synopsis settings; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    synopsis_source: Optional[str] = None
    synopsis_trigger_mode: Optional[str] = None
    synopsis_interval: Optional[int] = Field(default=None, ge=0)
    synopsis_force_words: Optional[int] = Field(default=None, ge=0)
    synopsis_check_empty: Optional[bool] = None
    synopsis_frozen: Optional[bool] = None
    synopsis_packing_strategy: Optional[str] = None
    synopsis_max_turns_per_request: Optional[int] = Field(default=None, ge=0)
    synopsis_override_response_length: Optional[int] = Field(default=None, ge=0)
    synopsis_history_count: Optional[int] = Field(default=None, ge=0)
    synopsis_history_fraction: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    synopsis_token_padding: Optional[int] = Field(default=None, ge=0)
    synopsis_context_size: Optional[int] = Field(default=None, gt=0)
    scriptwriter_prompt: Optional[str] = None
    injection_template: Optional[str] = None
    injection_position: Optional[str] = None
    injection_depth: Optional[int] = Field(default=None, ge=0)
    injection_role: Optional[str] = None


class SynopsisSettingsResponse(SynopsisSettingsPayload):
    model_config = ConfigDict(extra="ignore")
