"""Feedback Agent and Response Handler schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from behavioral_engine.data.schemas.intervention import (
    FeedbackType,
    InterventionRecord,
    InterventionStatus,
    InterventionType,
    ResponseAction,
)
from behavioral_engine.data.schemas.risk import RiskStateRecord


class ResponseEvent:
    """Orchestrator event types emitted by the response path."""
    ACKNOWLEDGED = "intervention_acknowledged"
    DISMISSED = "intervention_dismissed"
    SNOOZED = "intervention_snoozed"

    ALL = frozenset({ACKNOWLEDGED, DISMISSED, SNOOZED})


class RespondRequest(BaseModel):
    intervention_id: str
    action: ResponseAction
    context: Dict[str, Any] = Field(default_factory=dict)


class RespondResult(BaseModel):
    """Outcome of a user response to an intervention."""
    success: bool = True
    new_status: InterventionStatus
    feedback_type: FeedbackType
    event_type: str = Field(..., description="Orchestrator event to trigger")
    intervention: InterventionRecord


class FeedbackRequest(BaseModel):
    """What the feedback stage records."""
    user_id: str
    intervention_id: Optional[str] = None
    intervention_type: Optional[InterventionType] = None
    feedback_type: FeedbackType
    context: Dict[str, Any] = Field(default_factory=dict)


class FeedbackInsight(BaseModel):
    """A learned pattern about how the user reacts to interventions."""
    insight_type: str
    intervention_type: Optional[InterventionType] = None
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    effectiveness_rate: float = Field(..., ge=0.0, le=1.0)
    sample_size: int = Field(..., ge=0)
    confidence: float = Field(..., ge=0.0, le=1.0)


class FeedbackResult(BaseModel):
    """Output from the Feedback Agent."""
    success: bool = True
    feedback_id: Optional[str] = None
    insights: List[FeedbackInsight] = Field(default_factory=list)
    escalation_triggered: bool = False
    risk_raised: bool = False
    risk_state: Optional[RiskStateRecord] = Field(default=None, exclude=True)

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
