"""Intervention Agent input/output schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from behavioral_engine.data.schemas.intervention import InterventionRecord, InterventionType
from behavioral_engine.data.schemas.risk import RiskLevel


class DecisionRequest(BaseModel):
    """What the decision stage is asked to decide on."""
    user_id: str
    session_id: Optional[str] = None
    risk_level: RiskLevel
    risk_score: int = Field(..., ge=0, le=100)
    current_state: str = "idle"


class DecisionReason:
    """Why a decision came out the way it did."""
    SELECTED = "selected"
    RISK_BELOW_THRESHOLD = "risk_below_threshold"
    COOLING_DOWN = "cooling_down"
    NO_MATCHING_TEMPLATE = "no_matching_template"
    ALREADY_ESCALATED = "already_escalated"


class DecisionResult(BaseModel):
    """Output from the Intervention Agent.

    "No intervention" is a normal outcome, reported with a reason.
    """

    success: bool = True
    intervention_triggered: bool = False
    intervention: Optional[InterventionRecord] = None
    parent_notified: bool = False
    escalation_scheduled: bool = False
    reason: str = DecisionReason.SELECTED
    cooling_down: List[InterventionType] = Field(
        default_factory=list,
        description="Types excluded by an active cooldown"
    )
    escalated_ids: List[str] = Field(
        default_factory=list,
        description="Interventions moved to escalated by a follow-up"
    )
    dependency_failures: List[str] = Field(
        default_factory=list,
        description="Actuator or notifier errors (logged, not raised)"
    )

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
