"""Centralized constants for the behavioral engine."""


# ===== EXECUTION LOG =====
class ExecutionLogConstants:
    QUEUE_SIZE = 10000
    FLUSH_TIMEOUT_SECONDS = 5.0
    QUEUE_GET_TIMEOUT = 1.0


# ===== MONITORING =====
class MonitoringConstants:
    DEFAULT_BATCH_SIZE = 20
    ORCHESTRATION_LATENCY_WARNING_MS = 500
    ORCHESTRATION_LATENCY_CRITICAL_MS = 2000


# ===== RISK SCORING =====
class RiskConstants:
    FACTOR_MAX = 25
    SCORE_MIN = 0
    SCORE_MAX = 100

    # Level boundaries (score >= boundary)
    CRITICAL_SCORE = 75
    HIGH_SCORE = 50
    MEDIUM_SCORE = 25

    # Rolling window for event-based factors
    EVENT_WINDOW_MINUTES = 60

    # (ratio to threshold, points), evaluated top down
    SESSION_DURATION_BUCKETS = ((2.0, 25), (1.5, 20), (1.0, 15), (0.75, 10), (0.5, 5))
    REOPEN_FREQUENCY_BUCKETS = ((3.0, 25), (2.0, 20), (1.0, 15), (0.6, 8))
    SCROLL_VELOCITY_BUCKETS = ((2.0, 25), (1.5, 15), (1.0, 10))

    # Late night weights inside the bedtime window
    LATE_NIGHT_DEEP = 25        # 00:00-04:59
    LATE_NIGHT_BOUNDARY = 20    # 23:00-23:59 and 05:00-05:59
    LATE_NIGHT_SHALLOW = 10     # rest of the window

    DEFAULT_TIMEZONE = "UTC"


# ===== INTERVENTIONS =====
class InterventionConstants:
    DEFAULT_COOLDOWN_MINUTES = 30
    RECENT_INTERVENTION_LIMIT = 10

    # Score preference checks, applied in this order while walking templates
    PARENT_ALERT_MIN_SCORE = 75
    HARD_BLOCK_MIN_SCORE = 50
    MEDIUM_FRICTION_MIN_SCORE = 35

    ESCALATION_WINDOW_MINUTES = 60
    ESCALATION_DISMISSAL_COUNT = 2


# ===== FEEDBACK =====
class FeedbackConstants:
    INSIGHT_WINDOW_DAYS = 30
    INSIGHT_MIN_FEEDBACK = 5
    TYPE_MIN_SAMPLES = 3
    HOUR_MIN_SAMPLES = 2
    LOW_EFFECTIVENESS = 0.3
    HIGH_EFFECTIVENESS = 0.7
    TIME_EFFECTIVE = 0.6
    TIME_INEFFECTIVE = 0.3
    TYPE_CONFIDENCE_CAP = 0.9
    TIME_CONFIDENCE = 0.7

    ESCALATION_WINDOW_MINUTES = 60
    ESCALATION_NEGATIVE_COUNT = 3


# ===== DATA & QUERY LIMITS =====
class DataConstants:
    DEFAULT_QUERY_LIMIT = 50
    MAX_QUERY_LIMIT = 500
    MAX_BATCH_EVENTS = 100
    GUARDIAN_STATS_DAYS = 7
