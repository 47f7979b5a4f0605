"""Tests for the per-user agent state machine."""

import pytest

from behavioral_engine.orchestration import AgentStateName, Trigger, transition

S = AgentStateName


class TestTransition:
    """The transition table."""

    @pytest.mark.parametrize("state,trigger,expected", [
        (S.IDLE, Trigger.APP_OPEN, S.MONITORING),
        (S.IDLE, Trigger.SESSION_START, S.MONITORING),
        (S.MONITORING, Trigger.SESSION_END, S.IDLE),
        (S.MONITORING, Trigger.HIGH_RISK, S.INTERVENING),
        (S.MONITORING, Trigger.CRITICAL_RISK, S.ESCALATING),
        (S.INTERVENING, Trigger.INTERVENTION_ACKNOWLEDGED, S.MONITORING),
        (S.INTERVENING, Trigger.INTERVENTION_DISMISSED, S.MONITORING),
        (S.INTERVENING, Trigger.ESCALATION_TRIGGERED, S.ESCALATING),
        (S.ESCALATING, Trigger.PARENT_NOTIFIED, S.MONITORING),
    ])
    def test_rules(self, state, trigger, expected):
        assert transition(state, trigger) == expected

    @pytest.mark.parametrize("state", list(S))
    def test_app_close_always_idles(self, state):
        """app_close returns to idle from any state."""
        assert transition(state, Trigger.APP_CLOSE) == S.IDLE

    @pytest.mark.parametrize("state,trigger", [
        (S.IDLE, Trigger.HIGH_RISK),
        (S.IDLE, Trigger.SESSION_END),
        (S.ESCALATING, Trigger.HIGH_RISK),
        (S.ESCALATING, Trigger.SESSION_END),
        (S.INTERVENING, Trigger.APP_OPEN),
        (S.MONITORING, "scroll"),
    ])
    def test_unmatched_trigger_keeps_state(self, state, trigger):
        assert transition(state, trigger) == state

    def test_accepts_raw_value(self):
        """Stored states come back as plain strings."""
        assert transition("idle", Trigger.APP_OPEN) == S.MONITORING
