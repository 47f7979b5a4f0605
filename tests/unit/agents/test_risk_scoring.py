"""Tests for the pure risk scoring functions."""

from datetime import datetime

import pytest

from behavioral_engine.agents.risk import scoring
from behavioral_engine.data.schemas.policy import PolicyThresholds
from behavioral_engine.data.schemas.risk import RiskFactors, RiskLevel


class TestBuckets:
    """Factor buckets by ratio to the policy threshold."""

    @pytest.mark.parametrize("minutes,points", [
        (0, 0), (29, 0), (30, 5), (45, 10), (60, 15), (90, 20), (120, 25), (600, 25),
    ])
    def test_session_duration(self, minutes, points):
        """Limit of 60 minutes."""
        assert scoring.session_duration_factor(minutes, 60) == points

    @pytest.mark.parametrize("count,points", [
        (0, 0), (2, 0), (3, 8), (5, 15), (10, 20), (15, 25),
    ])
    def test_reopen_frequency(self, count, points):
        """Threshold of 5 reopens."""
        assert scoring.reopen_frequency_factor(count, 5) == points

    @pytest.mark.parametrize("velocity,points", [
        (0, 0), (999, 0), (1000, 10), (1500, 15), (2000, 25), (3000, 25),
    ])
    def test_scroll_velocity(self, velocity, points):
        """Threshold of 1000."""
        assert scoring.scroll_velocity_factor(velocity, 1000) == points

    def test_zero_thresholds_score_nothing(self):
        """Degenerate thresholds never divide by zero."""
        assert scoring.session_duration_factor(100, 0) == 0
        assert scoring.reopen_frequency_factor(10, 0) == 0
        assert scoring.scroll_velocity_factor(5000, 0) == 0


class TestLateNight:
    """Bedtime window handling."""

    def test_window_wraps_midnight(self):
        """22:00 to 07:00 covers late evening and early morning."""
        assert scoring.in_bedtime_window(23, 22, 7)
        assert scoring.in_bedtime_window(3, 22, 7)
        assert not scoring.in_bedtime_window(7, 22, 7)
        assert not scoring.in_bedtime_window(14, 22, 7)

    def test_same_day_window(self):
        """A window that does not cross midnight."""
        assert scoring.in_bedtime_window(14, 13, 15)
        assert not scoring.in_bedtime_window(15, 13, 15)

    def test_empty_window(self):
        """Equal start and end means no bedtime."""
        assert not scoring.in_bedtime_window(0, 22, 22)

    @pytest.mark.parametrize("hour,points", [
        (22, 10), (23, 20), (0, 25), (4, 25), (5, 20), (6, 10), (7, 0), (14, 0),
    ])
    def test_weights(self, hour, points):
        """Deeper into the night weighs more."""
        assert scoring.late_night_factor(hour, 22, 7) == points


class TestLocalTime:
    """Timezone conversion."""

    def test_converts_to_user_zone(self):
        """Naive UTC is read as UTC and shifted."""
        local = scoring.to_local(datetime(2026, 1, 15, 4, 30), "America/New_York")
        assert local.hour == 23
        assert local.day == 14

    def test_unknown_zone_falls_back_to_utc(self):
        """A bad zone name does not fail scoring."""
        local = scoring.to_local(datetime(2026, 1, 15, 4, 30), "Not/AZone")
        assert local.hour == 4

    def test_missing_zone_is_utc(self):
        assert scoring.to_local(datetime(2026, 1, 15, 4, 30), None).hour == 4


class TestEventInputs:
    """Counting reopens and scroll velocity from the window."""

    def test_count_reopens(self):
        """Both reopen and app_open count."""
        events = [("reopen", {}), ("app_open", {}), ("scroll", {}), ("session_start", {})]
        assert scoring.count_reopens(events) == 2

    def test_max_scroll_velocity(self):
        """Only scroll events and the current payload contribute."""
        events = [
            ("scroll", {"scroll_velocity": 1200}),
            ("scroll", {"velocity": "1800"}),
            ("tap", {"scroll_velocity": 9000}),
            ("scroll", {"scroll_velocity": "fast"}),
        ]
        assert scoring.max_scroll_velocity({"scroll_velocity": 500}, events) == 1800
        assert scoring.max_scroll_velocity({"velocity": -2500}, events) == 2500

    def test_no_velocity(self):
        assert scoring.max_scroll_velocity(None, []) == 0.0


class TestComputeFactors:
    """Combining the four factors."""

    def test_scroll_and_reopen_scenario(self):
        """Daytime, fresh session, reopens at threshold, triple velocity: 40."""
        policy = PolicyThresholds(session_limit_minutes=60, reopen_threshold=5)
        now = datetime(2026, 3, 10, 14, 0)
        events = [("reopen", {})] * 5 + [("scroll", {"scroll_velocity": 3000})]

        factors = scoring.compute_factors(
            policy,
            local_now=now,
            session_started_at=now,
            now=now,
            recent_events=events,
        )

        assert factors.as_dict() == {
            "session_duration_factor": 0,
            "reopen_frequency_factor": 15,
            "late_night_factor": 0,
            "scroll_velocity_factor": 25,
        }
        assert factors.total == 40
        assert RiskLevel.from_score(factors.total) == RiskLevel.MEDIUM

    def test_total_is_bounded(self):
        """Every factor maxed gives exactly 100."""
        factors = RiskFactors(
            session_duration_factor=25,
            reopen_frequency_factor=25,
            late_night_factor=25,
            scroll_velocity_factor=25,
        )
        assert factors.total == 100

    def test_no_session_no_duration(self):
        """Without an active session the duration factor is zero."""
        policy = PolicyThresholds()
        factors = scoring.compute_factors(policy, local_now=datetime(2026, 3, 10, 14, 0))
        assert factors.session_duration_factor == 0


class TestRiskLevel:
    """Score to level mapping."""

    @pytest.mark.parametrize("score,level", [
        (0, RiskLevel.LOW), (24, RiskLevel.LOW), (25, RiskLevel.MEDIUM),
        (49, RiskLevel.MEDIUM), (50, RiskLevel.HIGH), (74, RiskLevel.HIGH),
        (75, RiskLevel.CRITICAL), (100, RiskLevel.CRITICAL),
    ])
    def test_from_score(self, score, level):
        assert RiskLevel.from_score(score) == level
