"""Intervention Agent - decides whether to surface an intervention, and which.

Given a risk level and score it:
1. Maps the level to the allowed intervention types
2. Drops types still inside their cooldown window
3. Walks the active templates for the remaining types by descending
   priority and applies the score preference checks in written order
4. Creates the intervention as pending
5. Delivers parent alerts when the user has an active guardian link
6. Flags escalation after repeated dismissals (the orchestrator acts on it)

Returning "no intervention" is a normal outcome, not an error.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from behavioral_engine.agents.intervention.actuators import (
    EnforcementActuator,
    GuardianNotifier,
    LoggingActuator,
    LoggingNotifier,
)
from behavioral_engine.agents.intervention.schema import (
    DecisionReason,
    DecisionRequest,
    DecisionResult,
)
from behavioral_engine.common.constants import InterventionConstants
from behavioral_engine.common.exceptions import DependencyFailure, TemplateConfigurationError
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import FamilyLink, Intervention, InterventionTemplate
from behavioral_engine.data.schemas.intervention import (
    COOLDOWN_STATUSES,
    LEVEL_INTERVENTION_TYPES,
    OPEN_STATUSES,
    InterventionStatus,
    InterventionType,
    build_payload,
)
from behavioral_engine.data.schemas.policy import PolicyThresholds
from behavioral_engine.data.schemas.risk import RiskLevel
from behavioral_engine.governance.policies import PolicyResolver

logger = logging.getLogger(__name__)


class InterventionAgent:
    """Intervention Decision Agent.

    Responsibilities:
    - Enforce per-type cooldowns
    - Pick the template and instantiate the intervention
    - Hand hard blocks to the enforcement actuator and parent alerts to
      the guardian notifier
    - Detect repeated dismissals

    Constraints:
    - Never mutates interventions it did not create, except through
      ``escalate``
    - Actuator and notifier failures are logged, never raised
    """

    def __init__(
        self,
        policy_resolver: PolicyResolver,
        actuator: Optional[EnforcementActuator] = None,
        notifier: Optional[GuardianNotifier] = None,
        clock: Clock = utc_now,
    ):
        self.policy_resolver = policy_resolver
        self.actuator = actuator or LoggingActuator()
        self.notifier = notifier or LoggingNotifier()
        self._clock = clock

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def decide(self, db: Session, request: DecisionRequest) -> DecisionResult:
        """Select (or withhold) an intervention for the given risk.

        Raises:
            TemplateConfigurationError: If eligible types have no active template
        """
        now = self._clock()
        policy = self.policy_resolver.resolve(db, request.user_id)

        allowed = list(LEVEL_INTERVENTION_TYPES[request.risk_level])
        cooling = self.cooling_down_types(db, request.user_id, now)
        eligible = [t for t in allowed if t not in cooling]

        result = DecisionResult(
            cooling_down=sorted(cooling.intersection(allowed), key=lambda t: t.value),
            escalation_scheduled=self._should_schedule_escalation(
                db, request.user_id, request.risk_level, policy, now
            ),
        )

        if not allowed:
            result.reason = DecisionReason.RISK_BELOW_THRESHOLD
            return result
        if not eligible:
            logger.info(
                "All eligible intervention types are cooling down",
                extra={"user_id": request.user_id, "cooling_down": [t.value for t in cooling]},
            )
            result.reason = DecisionReason.COOLING_DOWN
            return result

        template = self.select_template(
            self._active_templates(db, eligible, request.risk_level),
            request.risk_score,
            parent_alert_threshold=policy.parent_alert_threshold,
        )
        if template is None:
            raise TemplateConfigurationError([t.value for t in eligible])

        self._instantiate(db, template, request, now, result)
        return result

    def select_template(
        self,
        templates: List[InterventionTemplate],
        risk_score: int,
        parent_alert_threshold: int = InterventionConstants.PARENT_ALERT_MIN_SCORE,
    ) -> Optional[InterventionTemplate]:
        """Pick from templates already sorted by descending priority.

        The first template is the default. Walking in order, the first one
        that passes a score preference check wins. The checks are applied
        in a fixed order (parent alert, hard block, medium friction), so a
        higher priority template can shadow a more severe one. The parent
        alert check uses the user's policy threshold.
        """
        if not templates:
            return None

        for template in templates:
            if (
                risk_score >= parent_alert_threshold
                and template.type == InterventionType.PARENT_ALERT.value
            ):
                return template
            if (
                risk_score >= InterventionConstants.HARD_BLOCK_MIN_SCORE
                and template.type == InterventionType.HARD_BLOCK.value
            ):
                return template
            if (
                risk_score >= InterventionConstants.MEDIUM_FRICTION_MIN_SCORE
                and template.type == InterventionType.MEDIUM_FRICTION.value
            ):
                return template
        return templates[0]

    # ------------------------------------------------------------------
    # Escalation follow-up
    # ------------------------------------------------------------------

    def escalate(
        self,
        db: Session,
        request: DecisionRequest,
        reason: str,
        exclude_ids: Sequence[str] = (),
    ) -> DecisionResult:
        """Act on a scheduled escalation.

        Marks the user's open interventions escalated and, cooldown
        permitting, creates a follow-up parent alert. Runs at most once
        per escalation window; ``exclude_ids`` (typically the intervention
        created earlier in the same run) are left open.
        """
        now = self._clock()
        if self.recently_escalated(db, request.user_id, now):
            logger.info(
                "Escalation already handled inside the window",
                extra={"user_id": request.user_id, "reason": reason},
            )
            return DecisionResult(reason=DecisionReason.ALREADY_ESCALATED)

        cooling = self.cooling_down_types(db, request.user_id, now)

        query = select(Intervention.id).where(
            Intervention.user_id == request.user_id,
            Intervention.status.in_(OPEN_STATUSES),
        )
        if exclude_ids:
            query = query.where(Intervention.id.notin_(list(exclude_ids)))
        open_ids = list(db.execute(query).scalars())
        if open_ids:
            db.execute(
                update(Intervention)
                .where(
                    Intervention.id.in_(open_ids),
                    Intervention.status.in_(OPEN_STATUSES),
                )
                .values(
                    status=InterventionStatus.ESCALATED.value,
                    escalated_at=now,
                    updated_at=now,
                )
            )

        result = DecisionResult(escalated_ids=open_ids)
        logger.warning(
            f"Escalating {len(open_ids)} open interventions",
            extra={"user_id": request.user_id, "reason": reason},
        )

        if InterventionType.PARENT_ALERT in cooling:
            result.reason = DecisionReason.COOLING_DOWN
            result.cooling_down = [InterventionType.PARENT_ALERT]
            return result

        templates = self._active_templates(db, [InterventionType.PARENT_ALERT])
        if not templates:
            result.reason = DecisionReason.NO_MATCHING_TEMPLATE
            logger.warning(
                "No active parent_alert template for escalation follow-up",
                extra={"user_id": request.user_id},
            )
            return result

        self._instantiate(db, templates[0], request, now, result, escalation_reason=reason)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def recently_escalated(
        self,
        db: Session,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Whether an escalation ran for the user inside the window."""
        now = now or self._clock()
        since = now - timedelta(minutes=InterventionConstants.ESCALATION_WINDOW_MINUTES)
        found = db.execute(
            select(Intervention.id).where(
                Intervention.user_id == user_id,
                or_(
                    Intervention.escalated_at >= since,
                    and_(
                        Intervention.escalation_reason.isnot(None),
                        Intervention.created_at >= since,
                    ),
                ),
            ).limit(1)
        ).first()
        return found is not None

    def cooling_down_types(
        self,
        db: Session,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Set[InterventionType]:
        """Types with a pending, delivered or escalated intervention inside its cooldown."""
        now = now or self._clock()
        rows = db.execute(
            select(Intervention.type, Intervention.created_at, InterventionTemplate.cooldown_minutes)
            .outerjoin(InterventionTemplate, Intervention.template_id == InterventionTemplate.id)
            .where(
                Intervention.user_id == user_id,
                Intervention.status.in_(COOLDOWN_STATUSES),
            )
            .order_by(Intervention.created_at.desc())
            .limit(InterventionConstants.RECENT_INTERVENTION_LIMIT)
        ).all()

        cooling = set()
        for row in rows:
            cooldown = row.cooldown_minutes
            if cooldown is None:
                cooldown = InterventionConstants.DEFAULT_COOLDOWN_MINUTES
            if now < row.created_at + timedelta(minutes=cooldown):
                cooling.add(InterventionType(row.type))
        return cooling

    def _active_templates(
        self,
        db: Session,
        types: Iterable[InterventionType],
        risk_level: Optional[RiskLevel] = None,
    ) -> List[InterventionTemplate]:
        templates = db.execute(
            select(InterventionTemplate)
            .where(
                InterventionTemplate.is_active.is_(True),
                InterventionTemplate.type.in_([t.value for t in types]),
            )
            .order_by(InterventionTemplate.priority.desc(), InterventionTemplate.name)
        ).scalars().all()
        if risk_level is None:
            return list(templates)
        return [t for t in templates if RiskLevel(t.min_risk_level).rank <= risk_level.rank]

    def _should_schedule_escalation(
        self,
        db: Session,
        user_id: str,
        risk_level: RiskLevel,
        policy: PolicyThresholds,
        now: datetime,
    ) -> bool:
        if not policy.escalation_enabled or risk_level == RiskLevel.CRITICAL:
            return False
        since = now - timedelta(minutes=InterventionConstants.ESCALATION_WINDOW_MINUTES)
        dismissed_at = list(db.execute(
            select(Intervention.dismissed_at)
            .where(
                Intervention.user_id == user_id,
                Intervention.status == InterventionStatus.DISMISSED.value,
                Intervention.dismissed_at >= since,
            )
            .order_by(Intervention.dismissed_at)
        ).scalars())
        if len(dismissed_at) < InterventionConstants.ESCALATION_DISMISSAL_COUNT:
            return False

        # The delay runs from the dismissal that reached the count
        due_at = dismissed_at[InterventionConstants.ESCALATION_DISMISSAL_COUNT - 1] + timedelta(
            minutes=policy.escalation_delay_minutes
        )
        if now < due_at:
            return False
        return not self.recently_escalated(db, user_id, now)

    # ------------------------------------------------------------------
    # Instantiation
    # ------------------------------------------------------------------

    def _instantiate(
        self,
        db: Session,
        template: InterventionTemplate,
        request: DecisionRequest,
        now: datetime,
        result: DecisionResult,
        escalation_reason: Optional[str] = None,
    ) -> None:
        intervention_type = InterventionType(template.type)
        payload = build_payload(
            intervention_type,
            title=template.title,
            message=template.message,
            action_label=template.action_label,
            action_url=template.action_url,
        )
        row = Intervention(
            user_id=request.user_id,
            template_id=template.id,
            session_id=request.session_id,
            type=intervention_type.value,
            status=InterventionStatus.PENDING.value,
            risk_level_at_trigger=request.risk_level.value,
            risk_score_at_trigger=request.risk_score,
            title=template.title,
            message=template.message,
            action_label=template.action_label,
            action_url=template.action_url,
            payload=payload.model_dump(mode="json"),
            user_response={},
            escalation_reason=escalation_reason,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        db.flush()

        if intervention_type == InterventionType.PARENT_ALERT:
            result.parent_notified = self._deliver_parent_alert(db, row, now, result)
        elif intervention_type == InterventionType.HARD_BLOCK:
            self._call_collaborator(
                "enforcement_actuator",
                lambda: self.actuator.engage(request.user_id, row.to_record()),
                row,
                result,
            )

        result.intervention_triggered = True
        result.intervention = row.to_record()
        result.reason = DecisionReason.SELECTED
        logger.info(
            f"Intervention created: {row.type} ({template.name})",
            extra={
                "user_id": request.user_id,
                "intervention_id": row.id,
                "status": row.status,
                "risk_score": request.risk_score,
            },
        )

    def _deliver_parent_alert(
        self,
        db: Session,
        row: Intervention,
        now: datetime,
        result: DecisionResult,
    ) -> bool:
        guardians = list(db.execute(
            select(FamilyLink.guardian_id).where(
                FamilyLink.user_id == row.user_id,
                FamilyLink.is_active.is_(True),
            )
        ).scalars())
        if not guardians:
            logger.info(
                "No active guardian link, parent alert left pending",
                extra={"user_id": row.user_id, "intervention_id": row.id},
            )
            return False

        row.status = InterventionStatus.DELIVERED.value
        row.delivered_at = now
        row.updated_at = now
        row.payload = {**(row.payload or {}), "guardian_notified": True}
        db.flush()

        record = row.to_record()
        for guardian_id in guardians:
            self._call_collaborator(
                "guardian_notifier",
                lambda: self.notifier.notify(guardian_id, record),
                row,
                result,
            )
        return True

    @staticmethod
    def _call_collaborator(name: str, call, row: Intervention, result: DecisionResult) -> None:
        try:
            call()
        except Exception as e:
            failure = DependencyFailure(
                f"{name} failed: {e}",
                stage="intervention_agent",
                details={"intervention_id": row.id, "user_id": row.user_id},
            )
            logger.error(failure.message, extra=failure.details)
            result.dependency_failures.append(failure.message)

