"""Risk Scoring Agent."""

from behavioral_engine.agents.risk.agent import RiskAgent
from behavioral_engine.agents.risk.schema import RiskEvaluation, RiskRequest

__all__ = ["RiskAgent", "RiskEvaluation", "RiskRequest"]
