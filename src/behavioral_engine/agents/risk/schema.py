"""Risk Agent input/output schemas."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from behavioral_engine.data.schemas.risk import RiskFactors, RiskLevel, RiskStateRecord


class RiskRequest(BaseModel):
    """What the risk stage is asked to evaluate."""
    user_id: str
    session_id: Optional[str] = None
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)


class RiskEvaluation(BaseModel):
    """Output from the Risk Agent.

    ``risk_state`` is the row as written, kept for fan-out.
    """

    success: bool = True
    score: int = Field(..., ge=0, le=100)
    risk_level: RiskLevel
    factors: RiskFactors
    previous_level: RiskLevel = RiskLevel.LOW
    level_changed: bool = False
    risk_state: Optional[RiskStateRecord] = Field(default=None, exclude=True)

    def summary(self) -> Dict[str, Any]:
        """Response shape for callers and the execution log."""
        return self.model_dump(mode="json")
