"""Risk schemas - factors, levels and stored risk state."""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field

from behavioral_engine.common.constants import RiskConstants


class RiskLevel(str, Enum):
    """Discrete risk buckets, ordered low to critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def from_score(cls, score: int) -> "RiskLevel":
        """Pure mapping from total score to level."""
        if score >= RiskConstants.CRITICAL_SCORE:
            return cls.CRITICAL
        if score >= RiskConstants.HIGH_SCORE:
            return cls.HIGH
        if score >= RiskConstants.MEDIUM_SCORE:
            return cls.MEDIUM
        return cls.LOW


_LEVEL_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class RiskFactors(BaseModel):
    """Four independent sub-scores, each in [0, 25]."""
    session_duration_factor: int = Field(default=0, ge=0, le=RiskConstants.FACTOR_MAX)
    reopen_frequency_factor: int = Field(default=0, ge=0, le=RiskConstants.FACTOR_MAX)
    late_night_factor: int = Field(default=0, ge=0, le=RiskConstants.FACTOR_MAX)
    scroll_velocity_factor: int = Field(default=0, ge=0, le=RiskConstants.FACTOR_MAX)

    @property
    def total(self) -> int:
        total = (
            self.session_duration_factor
            + self.reopen_frequency_factor
            + self.late_night_factor
            + self.scroll_velocity_factor
        )
        return max(RiskConstants.SCORE_MIN, min(RiskConstants.SCORE_MAX, total))

    def as_dict(self) -> Dict[str, int]:
        return self.model_dump()


class RiskStateRecord(BaseModel):
    """Current aggregate risk for a user (one row per user)."""
    user_id: str
    current_level: RiskLevel
    score: int = Field(..., ge=0, le=100)
    session_duration_factor: int = 0
    reopen_frequency_factor: int = 0
    late_night_factor: int = 0
    scroll_velocity_factor: int = 0
    last_evaluated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RiskHistoryRecord(BaseModel):
    """Append-only level change."""
    id: str
    user_id: str
    previous_level: RiskLevel
    new_level: RiskLevel
    score: int
    factors: Dict[str, int] = Field(default_factory=dict)
    triggered_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
