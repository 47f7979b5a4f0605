"""Orchestration: state machine, orchestrator and dispatcher."""

from behavioral_engine.orchestration.context import (
    OrchestrationRequest,
    OrchestrationResult,
    StageResult,
)
from behavioral_engine.orchestration.dispatcher import OrchestrationDispatcher
from behavioral_engine.orchestration.orchestrator import Orchestrator
from behavioral_engine.orchestration.state_machine import AgentStateName, Trigger, transition

__all__ = [
    "OrchestrationRequest",
    "OrchestrationResult",
    "StageResult",
    "OrchestrationDispatcher",
    "Orchestrator",
    "AgentStateName",
    "Trigger",
    "transition",
]
