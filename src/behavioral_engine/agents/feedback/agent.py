"""Feedback Agent - records how users respond and learns from it.

Closes the loop: every response becomes a feedback row, the last 30 days
of rows are summarized into insights, and a burst of negative outcomes
triggers escalation.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from behavioral_engine.agents.feedback.schema import FeedbackInsight, FeedbackRequest, FeedbackResult
from behavioral_engine.agents.risk import RiskAgent
from behavioral_engine.agents.risk.scoring import to_local
from behavioral_engine.common.constants import FeedbackConstants
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import FeedbackEvent, Profile
from behavioral_engine.data.schemas.intervention import FeedbackType, InterventionType
from behavioral_engine.data.schemas.risk import RiskLevel

logger = logging.getLogger(__name__)

_NEGATIVE = (FeedbackType.IGNORED.value, FeedbackType.INEFFECTIVE.value)


class FeedbackAgent:
    """Feedback Recorder.

    Responsibilities:
    - Persist one feedback row per response
    - Derive effectiveness insights per type and per local hour
    - Detect escalation and raise the stored risk level to at least high
    """

    def __init__(self, risk_agent: RiskAgent, clock: Clock = utc_now):
        self.risk_agent = risk_agent
        self._clock = clock

    def record(self, db: Session, request: FeedbackRequest) -> FeedbackResult:
        now = self._clock()
        row = FeedbackEvent(
            user_id=request.user_id,
            intervention_id=request.intervention_id,
            feedback_type=request.feedback_type.value,
            intervention_type=(
                request.intervention_type.value if request.intervention_type else None
            ),
            context=request.context,
            created_at=now,
        )
        db.add(row)
        db.flush()

        result = FeedbackResult(
            feedback_id=row.id,
            insights=self.insights(db, request.user_id, now),
        )

        if self._negative_burst(db, request.user_id, now):
            result.escalation_triggered = True
            raised = self.risk_agent.raise_to_at_least(
                db, request.user_id, RiskLevel.HIGH, triggered_by="feedback_escalation"
            )
            if raised is not None:
                result.risk_raised = True
                result.risk_state = raised.risk_state
            logger.warning(
                "Repeated negative feedback, escalation triggered",
                extra={"user_id": request.user_id, "risk_raised": result.risk_raised},
            )
        return result

    def insights(
        self,
        db: Session,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> List[FeedbackInsight]:
        """Summarize the last 30 days of feedback.

        Nothing is reported below the minimum sample size.
        """
        now = now or self._clock()
        since = now - timedelta(days=FeedbackConstants.INSIGHT_WINDOW_DAYS)
        rows = db.execute(
            select(FeedbackEvent.feedback_type, FeedbackEvent.intervention_type, FeedbackEvent.created_at)
            .where(FeedbackEvent.user_id == user_id, FeedbackEvent.created_at >= since)
        ).all()
        if len(rows) < FeedbackConstants.INSIGHT_MIN_FEEDBACK:
            return []

        tz_name = db.execute(
            select(Profile.timezone).where(Profile.user_id == user_id)
        ).scalar_one_or_none()

        by_type: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
        by_hour: Dict[int, List[int]] = defaultdict(lambda: [0, 0])
        for row in rows:
            effective = 1 if row.feedback_type == FeedbackType.EFFECTIVE.value else 0
            if row.intervention_type:
                by_type[row.intervention_type][0] += effective
                by_type[row.intervention_type][1] += 1
            hour = to_local(row.created_at, tz_name).hour
            by_hour[hour][0] += effective
            by_hour[hour][1] += 1

        insights = self._type_insights(by_type)
        insights.extend(self._hour_insights(by_hour))
        return insights

    @staticmethod
    def _type_insights(by_type: Dict[str, List[int]]) -> List[FeedbackInsight]:
        insights = []
        for intervention_type, (effective, total) in sorted(by_type.items()):
            if total < FeedbackConstants.TYPE_MIN_SAMPLES:
                continue
            rate = effective / total
            if rate < FeedbackConstants.LOW_EFFECTIVENESS:
                insight_type = "low_effectiveness"
            elif rate > FeedbackConstants.HIGH_EFFECTIVENESS:
                insight_type = "high_effectiveness"
            else:
                continue
            insights.append(FeedbackInsight(
                insight_type=insight_type,
                intervention_type=InterventionType(intervention_type),
                effectiveness_rate=rate,
                sample_size=total,
                confidence=min(FeedbackConstants.TYPE_CONFIDENCE_CAP, total / 10),
            ))
        return insights

    @staticmethod
    def _hour_insights(by_hour: Dict[int, List[int]]) -> List[FeedbackInsight]:
        rated: List[Tuple[float, int, int]] = [
            (effective / total, hour, total)
            for hour, (effective, total) in by_hour.items()
            if total >= FeedbackConstants.HOUR_MIN_SAMPLES
        ]
        if not rated:
            return []

        insights = []
        best = max(rated, key=lambda item: (item[0], -item[1]))
        worst = min(rated, key=lambda item: (item[0], item[1]))
        if best[0] > FeedbackConstants.TIME_EFFECTIVE:
            insights.append(FeedbackInsight(
                insight_type="time_effectiveness",
                hour=best[1],
                effectiveness_rate=best[0],
                sample_size=best[2],
                confidence=FeedbackConstants.TIME_CONFIDENCE,
            ))
        if worst[0] < FeedbackConstants.TIME_INEFFECTIVE:
            insights.append(FeedbackInsight(
                insight_type="time_ineffectiveness",
                hour=worst[1],
                effectiveness_rate=worst[0],
                sample_size=worst[2],
                confidence=FeedbackConstants.TIME_CONFIDENCE,
            ))
        return insights

    @staticmethod
    def _negative_burst(db: Session, user_id: str, now: datetime) -> bool:
        since = now - timedelta(minutes=FeedbackConstants.ESCALATION_WINDOW_MINUTES)
        negative = db.execute(
            select(func.count(FeedbackEvent.id)).where(
                FeedbackEvent.user_id == user_id,
                FeedbackEvent.feedback_type.in_(_NEGATIVE),
                FeedbackEvent.created_at >= since,
            )
        ).scalar_one()
        return negative >= FeedbackConstants.ESCALATION_NEGATIVE_COUNT
