"""Risk Agent - turns recent behavior into a score and a level.

The scoring itself is pure (see ``scoring``). This agent gathers the inputs,
overwrites the user's RiskState on every evaluation and appends a history
row only when the level changes.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from behavioral_engine.agents.risk import scoring
from behavioral_engine.agents.risk.schema import RiskEvaluation, RiskRequest
from behavioral_engine.common.constants import RiskConstants
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import (
    BehavioralEvent,
    Profile,
    RiskHistory,
    RiskState,
    UserSession,
)
from behavioral_engine.data.schemas.event import SessionState
from behavioral_engine.data.schemas.risk import RiskFactors, RiskLevel, RiskStateRecord
from behavioral_engine.data.upsert import upsert
from behavioral_engine.governance.policies import PolicyResolver

logger = logging.getLogger(__name__)


class RiskAgent:
    """Risk Scoring Agent.

    Responsibilities:
    - Resolve the user's policy and local time
    - Score session duration, reopen frequency, late night and scroll velocity
    - Persist RiskState (always) and RiskHistory (on level change)

    Constraints:
    - No intervention decisions
    - No publishing (the orchestrator fans out after commit)
    """

    def __init__(self, policy_resolver: PolicyResolver, clock: Clock = utc_now):
        self.policy_resolver = policy_resolver
        self._clock = clock

    def evaluate(self, db: Session, request: RiskRequest) -> RiskEvaluation:
        """Score the user now and persist the result."""
        now = self._clock()
        policy = self.policy_resolver.resolve(db, request.user_id)
        local_now = scoring.to_local(now, self._user_timezone(db, request.user_id))

        session = self._active_session(db, request.user_id, request.session_id)
        window_start = now - timedelta(minutes=RiskConstants.EVENT_WINDOW_MINUTES)
        recent_events = db.execute(
            select(BehavioralEvent.event_type, BehavioralEvent.event_data).where(
                BehavioralEvent.user_id == request.user_id,
                BehavioralEvent.timestamp >= window_start,
            )
        ).all()

        factors = scoring.compute_factors(
            policy=policy,
            local_now=local_now,
            session_started_at=session.started_at if session is not None else None,
            now=now,
            recent_events=[(row.event_type, row.event_data) for row in recent_events],
            current_event_data=request.event_data,
        )

        evaluation = self.store(db, request.user_id, factors, triggered_by=request.event_type)
        logger.info(
            f"Risk evaluated: {evaluation.score} ({evaluation.risk_level.value})",
            extra={
                "user_id": request.user_id,
                "policy_source": policy.source,
                "level_changed": evaluation.level_changed,
            },
        )
        return evaluation

    def store(
        self,
        db: Session,
        user_id: str,
        factors: RiskFactors,
        triggered_by: Optional[str] = None,
        level: Optional[RiskLevel] = None,
    ) -> RiskEvaluation:
        """Overwrite RiskState and append history on a level change.

        Args:
            level: Override for the level derived from the score
        """
        now = self._clock()
        score = factors.total
        new_level = level or RiskLevel.from_score(score)
        previous_level = self.current_level(db, user_id)

        values = {
            "current_level": new_level.value,
            "score": score,
            "last_evaluated_at": now,
            "updated_at": now,
            **factors.as_dict(),
        }
        upsert(
            db,
            RiskState,
            values={"user_id": user_id, **values},
            conflict_columns=("user_id",),
            update_values=values,
        )

        level_changed = new_level != previous_level
        if level_changed:
            db.add(RiskHistory(
                user_id=user_id,
                previous_level=previous_level.value,
                new_level=new_level.value,
                score=score,
                factors=factors.as_dict(),
                triggered_by=triggered_by,
                created_at=now,
            ))
            db.flush()

        return RiskEvaluation(
            score=score,
            risk_level=new_level,
            factors=factors,
            previous_level=previous_level,
            level_changed=level_changed,
            risk_state=RiskStateRecord(
                user_id=user_id,
                current_level=new_level,
                score=score,
                last_evaluated_at=now,
                **factors.as_dict(),
            ),
        )

    def raise_to_at_least(
        self,
        db: Session,
        user_id: str,
        floor: RiskLevel,
        triggered_by: str,
    ) -> Optional[RiskEvaluation]:
        """Lift the stored level to ``floor`` if it is lower.

        Factors and score are kept. Returns None when nothing changed.
        """
        row = db.get(RiskState, user_id)
        current = RiskLevel(row.current_level) if row is not None else RiskLevel.LOW
        if current.rank >= floor.rank:
            return None

        factors = RiskFactors(
            session_duration_factor=row.session_duration_factor,
            reopen_frequency_factor=row.reopen_frequency_factor,
            late_night_factor=row.late_night_factor,
            scroll_velocity_factor=row.scroll_velocity_factor,
        ) if row is not None else RiskFactors()
        logger.info(
            f"Raising risk level {current.value} -> {floor.value}",
            extra={"user_id": user_id, "triggered_by": triggered_by},
        )
        return self.store(db, user_id, factors, triggered_by=triggered_by, level=floor)

    @staticmethod
    def current_level(db: Session, user_id: str) -> RiskLevel:
        level = db.execute(
            select(RiskState.current_level).where(RiskState.user_id == user_id)
        ).scalar_one_or_none()
        return RiskLevel(level) if level else RiskLevel.LOW

    @staticmethod
    def _user_timezone(db: Session, user_id: str) -> Optional[str]:
        return db.execute(
            select(Profile.timezone).where(Profile.user_id == user_id)
        ).scalar_one_or_none()

    @staticmethod
    def _active_session(
        db: Session, user_id: str, session_id: Optional[str]
    ) -> Optional[UserSession]:
        stmt = select(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.state == SessionState.ACTIVE.value,
        )
        if session_id:
            session = db.execute(stmt.where(UserSession.id == session_id)).scalar_one_or_none()
            if session is not None:
                return session
        return db.execute(
            stmt.order_by(UserSession.started_at.desc()).limit(1)
        ).scalar_one_or_none()
