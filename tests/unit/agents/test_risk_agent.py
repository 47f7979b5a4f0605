"""Tests for the Risk Agent."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from behavioral_engine.agents.risk import RiskAgent, RiskRequest
from behavioral_engine.data.models import BehavioralEvent, Profile, RiskHistory, RiskState
from behavioral_engine.data.schemas.policy import PolicyUpdate
from behavioral_engine.data.schemas.risk import RiskFactors, RiskLevel


@pytest.fixture
def agent(policy_resolver, clock):
    return RiskAgent(policy_resolver, clock=clock)


def add_events(database, clock, user_id, *events, minutes_ago=1):
    with database.session_scope() as db:
        for event_type, data in events:
            db.add(BehavioralEvent(
                user_id=user_id,
                event_type=event_type,
                event_data=data,
                timestamp=clock() - timedelta(minutes=minutes_ago),
                created_at=clock(),
            ))


def evaluate(database, agent, user_id="user-1", event_type="scroll", event_data=None):
    with database.session_scope() as db:
        return agent.evaluate(db, RiskRequest(
            user_id=user_id, event_type=event_type, event_data=event_data or {}
        ))


def history(database, user_id="user-1"):
    with database.session_scope() as db:
        return db.execute(
            select(RiskHistory).where(RiskHistory.user_id == user_id).order_by(RiskHistory.created_at)
        ).scalars().all()


class TestEvaluate:
    """Tests for RiskAgent.evaluate."""

    def test_quiet_user_is_low(self, database, agent):
        """No behavior, no risk, no history row."""
        evaluation = evaluate(database, agent, event_type="tap")

        assert evaluation.score == 0
        assert evaluation.risk_level == RiskLevel.LOW
        assert evaluation.level_changed is False
        assert history(database) == []

    def test_state_overwritten_and_history_on_change(self, database, agent, clock):
        """RiskState is written each time, history only on a level change."""
        add_events(database, clock, "user-1", *[("reopen", {})] * 5)
        first = evaluate(database, agent, event_data={"scroll_velocity": 3000})

        assert first.score == 40
        assert first.risk_level == RiskLevel.MEDIUM
        assert first.level_changed is True
        assert first.previous_level == RiskLevel.LOW

        clock.advance(minutes=1)
        second = evaluate(database, agent, event_data={"scroll_velocity": 3000})
        assert second.level_changed is False

        rows = history(database)
        assert len(rows) == 1
        assert rows[0].previous_level == "low"
        assert rows[0].new_level == "medium"
        assert rows[0].score == 40
        assert rows[0].factors["scroll_velocity_factor"] == 25

        with database.session_scope() as db:
            state = db.get(RiskState, "user-1")
        assert state.score == 40
        assert state.last_evaluated_at == clock()

    def test_events_outside_window_ignored(self, database, agent, clock):
        """Only the last hour counts."""
        add_events(database, clock, "user-1", *[("reopen", {})] * 10, minutes_ago=90)
        assert evaluate(database, agent).factors.reopen_frequency_factor == 0

    def test_other_users_events_ignored(self, database, agent, clock):
        add_events(database, clock, "user-2", *[("reopen", {})] * 10)
        assert evaluate(database, agent).factors.reopen_frequency_factor == 0

    def test_late_night_uses_profile_timezone(self, database, agent, clock):
        """14:00 UTC is 01:00 in Sydney (summer), deep in the bedtime window."""
        with database.session_scope() as db:
            db.add(Profile(user_id="user-1", timezone="Australia/Sydney"))

        evaluation = evaluate(database, agent)
        assert evaluation.factors.late_night_factor == 25

    def test_user_policy_applies(self, database, agent, clock, link_guardian, policy_resolver):
        """A stricter guardian policy changes the buckets."""
        link_guardian("guardian-1", "user-1")
        with database.session_scope() as db:
            policy_resolver.update_policy(
                db, "guardian-1", "user-1", PolicyUpdate(scroll_velocity_threshold=500)
            )

        evaluation = evaluate(database, agent, event_data={"scroll_velocity": 1000})
        assert evaluation.factors.scroll_velocity_factor == 25


class TestRaiseToAtLeast:
    """Tests for the escalation floor."""

    def test_raises_and_keeps_factors(self, database, agent, clock):
        """Level is lifted, factors and score stay."""
        add_events(database, clock, "user-1", *[("reopen", {})] * 5)
        evaluate(database, agent)

        with database.session_scope() as db:
            raised = agent.raise_to_at_least(db, "user-1", RiskLevel.HIGH, "feedback_escalation")

        assert raised is not None
        assert raised.risk_level == RiskLevel.HIGH
        assert raised.score == 15
        assert raised.factors.reopen_frequency_factor == 15
        assert history(database)[-1].triggered_by == "feedback_escalation"

    def test_no_op_when_already_high_enough(self, database, agent):
        with database.session_scope() as db:
            agent.store(db, "user-1", RiskFactors(late_night_factor=25), level=RiskLevel.CRITICAL)
        with database.session_scope() as db:
            assert agent.raise_to_at_least(db, "user-1", RiskLevel.HIGH, "x") is None

    def test_user_without_state(self, database, agent):
        """A user never scored is raised from low."""
        with database.session_scope() as db:
            raised = agent.raise_to_at_least(db, "user-9", RiskLevel.HIGH, "feedback_escalation")
        assert raised.previous_level == RiskLevel.LOW
        assert raised.risk_level == RiskLevel.HIGH
        assert raised.score == 0
