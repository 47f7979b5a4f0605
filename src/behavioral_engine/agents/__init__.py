"""Pipeline agents: risk scoring, intervention decisions and feedback."""

from behavioral_engine.agents.risk.agent import RiskAgent
from behavioral_engine.agents.intervention.agent import InterventionAgent
from behavioral_engine.agents.feedback.agent import FeedbackAgent
from behavioral_engine.agents.feedback.response import ResponseHandler

__all__ = [
    "RiskAgent",
    "InterventionAgent",
    "FeedbackAgent",
    "ResponseHandler",
]
