"""Risk scoring - pure functions from observed behavior to factor points.

Every factor is bucketed by its ratio to a policy threshold rather than a
continuous formula, which keeps the tiers coarse and explainable.
Nothing here touches the database or the clock.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from behavioral_engine.common.constants import RiskConstants
from behavioral_engine.data.schemas.event import EventType, REOPEN_COUNTED_EVENTS
from behavioral_engine.data.schemas.policy import PolicyThresholds
from behavioral_engine.data.schemas.risk import RiskFactors

logger = logging.getLogger(__name__)

_VELOCITY_KEYS = ("scroll_velocity", "velocity")


def _bucket(ratio: float, buckets: Sequence[Tuple[float, int]]) -> int:
    for minimum, points in buckets:
        if ratio >= minimum:
            return points
    return 0


def session_duration_factor(elapsed_minutes: float, limit_minutes: int) -> int:
    """Points for time spent in the active session."""
    if elapsed_minutes <= 0 or limit_minutes <= 0:
        return 0
    return _bucket(elapsed_minutes / limit_minutes, RiskConstants.SESSION_DURATION_BUCKETS)


def reopen_frequency_factor(reopen_count: int, threshold: int) -> int:
    """Points for reopens counted in the rolling window."""
    if reopen_count <= 0 or threshold <= 0:
        return 0
    return _bucket(reopen_count / threshold, RiskConstants.REOPEN_FREQUENCY_BUCKETS)


def scroll_velocity_factor(velocity: float, threshold: float) -> int:
    """Points for the fastest scroll seen."""
    if velocity <= 0 or threshold <= 0:
        return 0
    return _bucket(velocity / threshold, RiskConstants.SCROLL_VELOCITY_BUCKETS)


def in_bedtime_window(hour: int, start_hour: int, end_hour: int) -> bool:
    """Whether a local hour falls in [start, end), wrapping past midnight."""
    if start_hour == end_hour:
        return False
    if start_hour > end_hour:
        return hour >= start_hour or hour < end_hour
    return start_hour <= hour < end_hour


def late_night_factor(local_hour: int, start_hour: int, end_hour: int) -> int:
    """Heavier the deeper into the bedtime window the user is."""
    if not in_bedtime_window(local_hour, start_hour, end_hour):
        return 0
    if 0 <= local_hour < 5:
        return RiskConstants.LATE_NIGHT_DEEP
    if local_hour >= 23 or local_hour < 6:
        return RiskConstants.LATE_NIGHT_BOUNDARY
    return RiskConstants.LATE_NIGHT_SHALLOW


def to_local(now: datetime, tz_name: Optional[str]) -> datetime:
    """Convert naive UTC ``now`` to the user's zone.

    Unknown zone names fall back to UTC.
    """
    name = tz_name or RiskConstants.DEFAULT_TIMEZONE
    try:
        zone = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        zone = ZoneInfo(RiskConstants.DEFAULT_TIMEZONE)
    return now.replace(tzinfo=timezone.utc).astimezone(zone)


def _velocity(event_data: Optional[Mapping[str, Any]]) -> float:
    if not event_data:
        return 0.0
    for key in _VELOCITY_KEYS:
        value = event_data.get(key)
        if value is None:
            continue
        try:
            return abs(float(value))
        except (TypeError, ValueError):
            continue
    return 0.0


def max_scroll_velocity(
    current_event_data: Optional[Mapping[str, Any]],
    recent_events: Iterable[Tuple[str, Optional[Mapping[str, Any]]]],
) -> float:
    """Maximum of the current event's velocity and recent scroll events."""
    velocities = [_velocity(current_event_data)]
    velocities.extend(
        _velocity(data)
        for event_type, data in recent_events
        if event_type == EventType.SCROLL.value
    )
    return max(velocities)


def count_reopens(recent_events: Iterable[Tuple[str, Any]]) -> int:
    return sum(1 for event_type, _ in recent_events if event_type in REOPEN_COUNTED_EVENTS)


def compute_factors(
    policy: PolicyThresholds,
    local_now: datetime,
    session_started_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    recent_events: Sequence[Tuple[str, Optional[Mapping[str, Any]]]] = (),
    current_event_data: Optional[Mapping[str, Any]] = None,
) -> RiskFactors:
    """Score the four factors independently.

    Args:
        policy: Resolved thresholds
        local_now: Current time in the user's zone
        session_started_at: Start of the active session (naive UTC), if any
        now: Current naive UTC time, needed with ``session_started_at``
        recent_events: (event_type, event_data) pairs from the rolling window
        current_event_data: Payload of the event being evaluated

    Returns:
        RiskFactors; ``.total`` is the clamped score.
    """
    elapsed_minutes = 0.0
    if session_started_at is not None and now is not None:
        elapsed_minutes = max(0.0, (now - session_started_at).total_seconds() / 60)

    return RiskFactors(
        session_duration_factor=session_duration_factor(
            elapsed_minutes, policy.session_limit_minutes
        ),
        reopen_frequency_factor=reopen_frequency_factor(
            count_reopens(recent_events), policy.reopen_threshold
        ),
        late_night_factor=late_night_factor(
            local_now.hour, policy.bedtime_start_hour, policy.bedtime_end_hour
        ),
        scroll_velocity_factor=scroll_velocity_factor(
            max_scroll_velocity(current_event_data, recent_events),
            policy.scroll_velocity_threshold,
        ),
    )
