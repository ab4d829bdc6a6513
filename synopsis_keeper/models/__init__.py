from .conversation import (
    AppendTurnRequest,
    AppendTurnResponse,
    ConversationClearResponse,
    ConversationListResponse,
    ConversationResponse,
    EditTurnRequest,
    ParticipantRequest,
    SwitchBranchRequest,
    TurnPayload,
)
from .meta import HealthResponse, RootResponse
from .synopsis import (
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

__all__ = [
    "AppendTurnRequest",
    "AppendTurnResponse",
    "ArchiveRecordPayload",
    "ArchiveResponse",
    "ArchiveUpdateRequest",
    "CommitOutcomeResponse",
    "ConversationClearResponse",
    "ConversationListResponse",
    "ConversationResponse",
    "EditTurnRequest",
    "ForceSummarizeResponse",
    "HealthResponse",
    "InjectionResponse",
    "NotificationPayload",
    "NotificationsResponse",
    "ParticipantRequest",
    "PresetApplyRequest",
    "PresetsResponse",
    "PresetStoreRequest",
    "RootResponse",
    "SwitchBranchRequest",
    "SynopsisCommandRequest",
    "SynopsisCommandResponse",
    "SynopsisResponse",
    "SynopsisSettingsPayload",
    "SynopsisSettingsResponse",
    "TriggerDecisionResponse",
    "TurnPayload",
    "UserDemandRequest",
    "UserDemandResponse",
]
