"""API Schemas - Request/Response models for the API Gateway.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from behavioral_engine.common.constants import DataConstants
from behavioral_engine.data.schemas.event import EventType
from behavioral_engine.data.schemas.intervention import InterventionRecord, InterventionStatus
from behavioral_engine.data.schemas.risk import RiskHistoryRecord, RiskStateRecord


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class EventIn(BaseModel):
    """One raw device event."""
    event_type: EventType = Field(..., description="Behavioral event type")
    device_identifier: str = Field(
        ..., min_length=1, max_length=255,
        description="Stable per-install device identifier"
    )
    platform: str = Field(default="unknown", max_length=32)
    screen_name: Optional[str] = Field(default=None, max_length=255)
    event_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form payload, e.g. scroll_velocity"
    )
    timestamp: Optional[datetime] = Field(
        default=None,
        description="Client timestamp; server time when omitted"
    )
    device_name: Optional[str] = Field(default=None, max_length=255)
    os_version: Optional[str] = Field(default=None, max_length=64)
    app_version: Optional[str] = Field(default=None, max_length=64)


class BatchEventsIn(BaseModel):
    """Request body for a batch of events."""
    events: List[EventIn] = Field(
        ..., min_length=1, max_length=DataConstants.MAX_BATCH_EVENTS
    )


class OrchestrateRequest(BaseModel):
    """Request body for POST /v1/orchestrate."""
    user_id: Optional[str] = Field(
        default=None,
        description="Must match the caller when given"
    )
    session_id: Optional[str] = None
    event_type: str = Field(..., min_length=1, max_length=64)
    event_data: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class EventResult(BaseModel):
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None


class IngestResponse(BaseModel):
    """Response for POST /v1/events."""
    success: bool
    session_id: Optional[str] = None
    device_id: Optional[str] = None
    results: List[EventResult] = Field(default_factory=list)
    execution_time_ms: float


class RespondResponse(BaseModel):
    success: bool
    new_status: InterventionStatus


class OrchestrateResponse(BaseModel):
    success: bool
    state: str
    risk_level: Optional[str] = None
    risk_score: Optional[int] = None
    intervention: Optional[Dict[str, Any]] = None
    agent_results: List[Dict[str, Any]] = Field(default_factory=list)
    execution_time_ms: float


class InterventionListResponse(BaseModel):
    interventions: List[InterventionRecord] = Field(default_factory=list)


class RiskStateResponse(BaseModel):
    risk_state: Optional[RiskStateRecord] = None


class RiskHistoryResponse(BaseModel):
    history: List[RiskHistoryRecord] = Field(default_factory=list)


class ChildSummary(BaseModel):
    """A user linked to the calling guardian."""
    user_id: str
    display_name: Optional[str] = None
    linked_at: datetime
    risk_state: Optional[RiskStateRecord] = None


class ChildrenResponse(BaseModel):
    children: List[ChildSummary] = Field(default_factory=list)


class ChildStats(BaseModel):
    """Recent activity summary for one linked user."""
    user_id: str
    period_days: int
    session_count: int
    total_minutes: int
    minutes_today: int = Field(default=0, description="Since midnight UTC")
    daily_limit_minutes: Optional[int] = None
    daily_limit_reached: bool = False
    interventions_by_type: Dict[str, int] = Field(default_factory=dict)
    interventions_by_status: Dict[str, int] = Field(default_factory=dict)
    risk_state: Optional[RiskStateRecord] = None


class ErrorResponse(BaseModel):
    """Error response for failed requests."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    request_id: Optional[str] = Field(default=None, description="Request ID for support")
    details: Dict[str, Any] = Field(default_factory=dict)
