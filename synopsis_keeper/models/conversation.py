from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TurnPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    author: str = Field(default="")
    text: str = Field(default="")
    is_system: bool = False
    annotations: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce_text(cls, data: Any) -> Any:
        if isinstance(data, dict) and "text" in data:
            data["text"] = "" if data["text"] is None else str(data["text"])
        return data


class AppendTurnRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    author: str = Field(..., min_length=1)
    text: str = Field(...)
    is_system: bool = False


class AppendTurnResponse(BaseModel):
    ok: bool = True
    index: int


class EditTurnRequest(BaseModel):
    text: str


class SwitchBranchRequest(BaseModel):
    branch_id: str = Field(..., min_length=1)
    turns: Optional[List[TurnPayload]] = None


class ParticipantRequest(BaseModel):
    participant_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None


class ConversationResponse(BaseModel):
    conversation_id: str
    branch_id: str
    participant_id: str
    user_name: str
    streaming: bool = False
    turns: List[TurnPayload] = Field(default_factory=list)


class ConversationListResponse(BaseModel):
    conversations: List[str] = Field(default_factory=list)


class ConversationClearResponse(BaseModel):
    ok: bool = True
