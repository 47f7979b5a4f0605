"""Domain schemas shared across the pipeline."""

from behavioral_engine.data.schemas.event import (
    EventType,
    SessionState,
    BehavioralEventRecord,
    SessionRecord,
)
from behavioral_engine.data.schemas.risk import (
    RiskLevel,
    RiskFactors,
    RiskStateRecord,
    RiskHistoryRecord,
)
from behavioral_engine.data.schemas.intervention import (
    InterventionType,
    InterventionStatus,
    ResponseAction,
    FeedbackType,
    InterventionPayload,
    SoftNudge,
    MediumFriction,
    HardBlock,
    ParentAlert,
    TemplateSpec,
    InterventionRecord,
)
from behavioral_engine.data.schemas.policy import (
    PolicyThresholds,
    ResolvedPolicy,
    PolicyUpdate,
    PipelineDefaults,
)

__all__ = [
    "EventType",
    "SessionState",
    "BehavioralEventRecord",
    "SessionRecord",
    "RiskLevel",
    "RiskFactors",
    "RiskStateRecord",
    "RiskHistoryRecord",
    "InterventionType",
    "InterventionStatus",
    "ResponseAction",
    "FeedbackType",
    "InterventionPayload",
    "SoftNudge",
    "MediumFriction",
    "HardBlock",
    "ParentAlert",
    "TemplateSpec",
    "InterventionRecord",
    "PolicyThresholds",
    "ResolvedPolicy",
    "PolicyUpdate",
    "PipelineDefaults",
]
