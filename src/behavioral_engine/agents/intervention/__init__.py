"""Intervention Decision Agent."""

from behavioral_engine.agents.intervention.actuators import (
    EnforcementActuator,
    GuardianNotifier,
    LoggingActuator,
    LoggingNotifier,
)
from behavioral_engine.agents.intervention.agent import InterventionAgent
from behavioral_engine.agents.intervention.schema import (
    DecisionReason,
    DecisionRequest,
    DecisionResult,
)

__all__ = [
    "InterventionAgent",
    "DecisionRequest",
    "DecisionResult",
    "DecisionReason",
    "EnforcementActuator",
    "GuardianNotifier",
    "LoggingActuator",
    "LoggingNotifier",
]
