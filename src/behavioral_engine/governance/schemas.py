"""Governance schemas - execution log records.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from behavioral_engine.common.time import utc_now


class AgentType(str, Enum):
    """Pipeline stages that write execution records."""
    GATEWAY = "gateway"
    ORCHESTRATOR = "orchestrator"
    RISK_AGENT = "risk_agent"
    INTERVENTION_AGENT = "intervention_agent"
    FEEDBACK_AGENT = "feedback_agent"
    RESPONSE_HANDLER = "response_handler"


class ExecutionLogEntry(BaseModel):
    """One stage run: inputs, outputs or error, and timing.

    Written regardless of outcome so runs can be reconciled offline.
    """
    entry_id: str = Field(
        default_factory=lambda: f"exe_{uuid4().hex[:12]}",
        description="Unique execution log identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the stage finished (UTC)"
    )
    agent_type: AgentType = Field(
        ...,
        description="Stage that ran"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="User the stage ran for"
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Session context, if any"
    )
    input_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stage input"
    )
    output_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stage output (empty on failure)"
    )
    execution_time_ms: float = Field(
        default=0.0,
        ge=0.0,
        description="Wall time spent in the stage"
    )
    success: bool = Field(
        default=True,
        description="Whether the stage completed"
    )
    error_message: Optional[str] = Field(
        default=None,
        description="Error summary when success is False"
    )
