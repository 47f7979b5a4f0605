"""Per-user agent state machine.

A pure transition table. Triggers with no rule for the current state leave
it unchanged.
"""

from enum import Enum
from typing import Dict, Tuple


class AgentStateName(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    INTERVENING = "intervening"
    ESCALATING = "escalating"


class Trigger:
    """Transition triggers: raw event types plus pipeline outcomes."""
    APP_OPEN = "app_open"
    SESSION_START = "session_start"
    APP_CLOSE = "app_close"
    SESSION_END = "session_end"
    CRITICAL_RISK = "critical_risk_detected"
    HIGH_RISK = "high_risk_detected"
    INTERVENTION_ACKNOWLEDGED = "intervention_acknowledged"
    INTERVENTION_DISMISSED = "intervention_dismissed"
    ESCALATION_TRIGGERED = "escalation_triggered"
    PARENT_NOTIFIED = "parent_notified"


_S = AgentStateName

TRANSITIONS: Dict[Tuple[AgentStateName, str], AgentStateName] = {
    (_S.IDLE, Trigger.APP_OPEN): _S.MONITORING,
    (_S.IDLE, Trigger.SESSION_START): _S.MONITORING,
    (_S.MONITORING, Trigger.APP_CLOSE): _S.IDLE,
    (_S.MONITORING, Trigger.SESSION_END): _S.IDLE,
    (_S.MONITORING, Trigger.CRITICAL_RISK): _S.ESCALATING,
    (_S.MONITORING, Trigger.HIGH_RISK): _S.INTERVENING,
    (_S.INTERVENING, Trigger.INTERVENTION_ACKNOWLEDGED): _S.MONITORING,
    (_S.INTERVENING, Trigger.INTERVENTION_DISMISSED): _S.MONITORING,
    (_S.INTERVENING, Trigger.ESCALATION_TRIGGERED): _S.ESCALATING,
    (_S.ESCALATING, Trigger.PARENT_NOTIFIED): _S.MONITORING,
}

# Rules that apply from every state
ANY_STATE_TRANSITIONS: Dict[str, AgentStateName] = {
    Trigger.APP_CLOSE: _S.IDLE,
}


def transition(state: AgentStateName, trigger: str) -> AgentStateName:
    """Next state for ``trigger``, or ``state`` if no rule applies."""
    state = AgentStateName(state)
    if trigger in ANY_STATE_TRANSITIONS:
        return ANY_STATE_TRANSITIONS[trigger]
    return TRANSITIONS.get((state, trigger), state)
