"""Orchestration context - immutable records that flow through one run.

Design principles:
- Frozen dataclasses, built through ``create`` factories
- Every stage leaves a StageResult, success or not
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from behavioral_engine.common.time import utc_now
from behavioral_engine.governance.schemas import AgentType


@dataclass(frozen=True)
class OrchestrationRequest:
    """One orchestrator invocation."""
    run_id: str
    user_id: str
    event_type: str
    session_id: Optional[str] = None
    event_data: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None
    requested_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        user_id: str,
        event_type: str,
        session_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = None,
    ) -> "OrchestrationRequest":
        return cls(
            run_id=f"run_{uuid4().hex[:12]}",
            user_id=user_id,
            event_type=event_type,
            session_id=session_id,
            event_data=dict(event_data or {}),
            event_id=event_id,
            requested_at=utc_now(),
        )

    def log_input(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
        }


@dataclass(frozen=True)
class StageResult:
    """What one stage did."""
    agent: AgentType
    success: bool
    execution_time_ms: float
    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "agent": self.agent.value,
            "success": self.success,
            "execution_time_ms": round(self.execution_time_ms, 3),
        }
        if self.success:
            data["output"] = self.output
        else:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class OrchestrationResult:
    """Best-effort summary of a run. Always produced, even on stage failures."""
    run_id: str
    user_id: str
    state: str
    previous_state: str
    risk_level: Optional[str]
    risk_score: Optional[int]
    intervention: Optional[Dict[str, Any]]
    stages: Tuple[StageResult, ...]
    execution_time_ms: float

    @property
    def success(self) -> bool:
        return all(stage.success for stage in self.stages)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state,
            "risk_level": self.risk_level,
            "risk_score": self.risk_score,
            "intervention": self.intervention,
            "agent_results": [stage.to_dict() for stage in self.stages],
            "execution_time_ms": round(self.execution_time_ms, 3),
        }
