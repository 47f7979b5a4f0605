"""Orchestrator - sequences the pipeline stages for one event.

Per invocation:
1. Load the user's agent state (default idle) and apply the event's own
   transition
2. Risk stage, then fan out the new risk state
3. If the level is elevated: risk transition, then the decision stage
4. Feedback stage for intervention responses
5. Escalation follow-up when the decision or feedback stage asks for it
6. Persist the agent state unconditionally

Each stage runs in its own transaction and is caught and logged on its
own. A failed stage never aborts the others and never rolls back what an
earlier stage committed.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import select, update

from behavioral_engine.agents.feedback import FeedbackAgent, FeedbackRequest, ResponseEvent
from behavioral_engine.agents.intervention import DecisionReason, DecisionRequest, InterventionAgent
from behavioral_engine.agents.risk import RiskAgent, RiskRequest
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.db import Database
from behavioral_engine.data.models import AgentState, BehavioralEvent
from behavioral_engine.data.schemas.intervention import FeedbackType, InterventionType
from behavioral_engine.data.schemas.risk import RiskLevel
from behavioral_engine.data.upsert import upsert
from behavioral_engine.governance.audit import ExecutionLogger
from behavioral_engine.governance.schemas import AgentType
from behavioral_engine.monitoring.metrics import MetricsCollector
from behavioral_engine.orchestration.context import (
    OrchestrationRequest,
    OrchestrationResult,
    StageResult,
)
from behavioral_engine.orchestration.state_machine import AgentStateName, Trigger, transition
from behavioral_engine.realtime.channels import ChannelRegistry, MessageType

logger = logging.getLogger(__name__)

T = TypeVar("T")

ELEVATED_LEVELS = (RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL)

_RISK_TRIGGERS = {
    RiskLevel.CRITICAL: Trigger.CRITICAL_RISK,
    RiskLevel.HIGH: Trigger.HIGH_RISK,
}

_DEFAULT_FEEDBACK = {
    ResponseEvent.ACKNOWLEDGED: FeedbackType.EFFECTIVE,
    ResponseEvent.DISMISSED: FeedbackType.INEFFECTIVE,
    ResponseEvent.SNOOZED: FeedbackType.IGNORED,
}


class Orchestrator:
    """Runs the pipeline for one user event.

    Features:
    - Per-stage error isolation with an execution-log record per stage
    - Fan-out only after the stage's transaction committed
    - Best-effort summary even when stages fail
    """

    def __init__(
        self,
        database: Database,
        risk_agent: RiskAgent,
        intervention_agent: InterventionAgent,
        feedback_agent: FeedbackAgent,
        execution_logger: ExecutionLogger,
        channels: Optional[ChannelRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Clock = utc_now,
    ):
        self.database = database
        self.risk_agent = risk_agent
        self.intervention_agent = intervention_agent
        self.feedback_agent = feedback_agent
        self.execution_logger = execution_logger
        self.channels = channels
        self.metrics = metrics
        self._clock = clock

    def run(self, request: OrchestrationRequest) -> OrchestrationResult:
        """Run every stage for ``request`` and summarize the outcome."""
        started = time.perf_counter()
        stages: List[StageResult] = []

        previous_state = self._load_state(request.user_id)
        state = transition(previous_state, request.event_type)

        risk_level: Optional[RiskLevel] = None
        risk_score: Optional[int] = None
        intervention: Optional[Dict[str, Any]] = None
        created_type: Optional[str] = None

        # Risk
        evaluation = self._run_stage(
            AgentType.RISK_AGENT,
            request,
            stages,
            lambda db: self.risk_agent.evaluate(db, RiskRequest(
                user_id=request.user_id,
                session_id=request.session_id,
                event_type=request.event_type,
                event_data=request.event_data,
            )),
        )
        if evaluation is not None:
            risk_level, risk_score = evaluation.risk_level, evaluation.score
            self._publish(request.user_id, MessageType.RISK_STATE_UPDATED, evaluation.risk_state)

        # Decision
        decision = None
        if risk_level in ELEVATED_LEVELS:
            if risk_level in _RISK_TRIGGERS:
                state = transition(state, _RISK_TRIGGERS[risk_level])
            decision_state = state
            decision = self._run_stage(
                AgentType.INTERVENTION_AGENT,
                request,
                stages,
                lambda db: self.intervention_agent.decide(db, DecisionRequest(
                    user_id=request.user_id,
                    session_id=request.session_id,
                    risk_level=risk_level,
                    risk_score=risk_score,
                    current_state=decision_state.value,
                )),
            )
            if decision is not None and decision.intervention is not None:
                intervention = decision.intervention.model_dump(mode="json")
                created_type = decision.intervention.type.value
                self._publish(request.user_id, MessageType.INTERVENTION_CREATED, decision.intervention)
                if decision.parent_notified:
                    state = transition(state, Trigger.PARENT_NOTIFIED)

        # Feedback
        feedback = None
        if request.event_type in ResponseEvent.ALL:
            feedback = self._run_stage(
                AgentType.FEEDBACK_AGENT,
                request,
                stages,
                lambda db: self.feedback_agent.record(db, self._feedback_request(request)),
            )
            if feedback is not None and feedback.risk_state is not None:
                risk_level = feedback.risk_state.current_level
                risk_score = feedback.risk_state.score
                self._publish(request.user_id, MessageType.RISK_STATE_UPDATED, feedback.risk_state)

        # Escalation follow-up
        escalation_reason = None
        if decision is not None and decision.escalation_scheduled:
            escalation_reason = "repeated_dismissals"
        elif feedback is not None and feedback.escalation_triggered:
            escalation_reason = "negative_feedback"

        escalated = False
        if escalation_reason:
            follow_up_state = transition(state, Trigger.ESCALATION_TRIGGERED)
            created_ids = [decision.intervention.id] if (
                decision is not None and decision.intervention is not None
            ) else []
            follow_up = self._run_stage(
                AgentType.INTERVENTION_AGENT,
                request,
                stages,
                lambda db: self.intervention_agent.escalate(
                    db,
                    DecisionRequest(
                        user_id=request.user_id,
                        session_id=request.session_id,
                        risk_level=risk_level or RiskLevel.LOW,
                        risk_score=risk_score or 0,
                        current_state=follow_up_state.value,
                    ),
                    reason=escalation_reason,
                    exclude_ids=created_ids,
                ),
            )
            escalated = follow_up is None or follow_up.reason != DecisionReason.ALREADY_ESCALATED
            if escalated:
                state = follow_up_state
            if follow_up is not None and follow_up.intervention is not None:
                intervention = follow_up.intervention.model_dump(mode="json")
                created_type = follow_up.intervention.type.value
                self._publish(request.user_id, MessageType.INTERVENTION_CREATED, follow_up.intervention)
                if follow_up.parent_notified:
                    state = transition(state, Trigger.PARENT_NOTIFIED)

        # Agent state
        final_state = state
        self._run_stage(
            AgentType.ORCHESTRATOR,
            request,
            stages,
            lambda db: self._save_state(
                db, request, previous_state, final_state, risk_level, risk_score
            ),
        )

        elapsed_ms = (time.perf_counter() - started) * 1000
        result = OrchestrationResult(
            run_id=request.run_id,
            user_id=request.user_id,
            state=final_state.value,
            previous_state=previous_state.value,
            risk_level=risk_level.value if risk_level else None,
            risk_score=risk_score,
            intervention=intervention,
            stages=tuple(stages),
            execution_time_ms=elapsed_ms,
        )

        if self.metrics is not None:
            self.metrics.record_orchestration(
                latency_ms=elapsed_ms,
                risk_level=result.risk_level,
                intervention_type=created_type,
                escalated=escalated,
            )

        logger.info(
            f"Orchestration {request.run_id}: {previous_state.value} -> {final_state.value}",
            extra={
                "user_id": request.user_id,
                "event_type": request.event_type,
                "risk_level": result.risk_level,
                "success": result.success,
                "execution_time_ms": round(elapsed_ms, 3),
            },
        )
        return result

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    def _run_stage(
        self,
        agent_type: AgentType,
        request: OrchestrationRequest,
        stages: List[StageResult],
        work: Callable[[Any], T],
    ) -> Optional[T]:
        """Run ``work`` in its own transaction; record and swallow failures."""
        started = time.perf_counter()
        try:
            with self.execution_logger.track(
                agent_type,
                user_id=request.user_id,
                session_id=request.session_id,
                input_data=request.log_input(),
            ) as record:
                with self.database.session_scope() as db:
                    output = work(db)
                record.output = output.summary() if hasattr(output, "summary") else dict(output)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(
                f"Stage {agent_type.value} failed: {type(e).__name__}: {e}",
                extra={"user_id": request.user_id, "run_id": request.run_id},
                exc_info=True,
            )
            if self.metrics is not None:
                self.metrics.record_stage_failure(agent_type.value, type(e).__name__)
            stages.append(StageResult(
                agent=agent_type,
                success=False,
                execution_time_ms=elapsed_ms,
                error=f"{type(e).__name__}: {e}",
            ))
            return None

        stages.append(StageResult(
            agent=agent_type,
            success=True,
            execution_time_ms=(time.perf_counter() - started) * 1000,
            output=record.output,
        ))
        return output

    def _publish(self, user_id: str, message_type: str, record) -> None:
        if self.channels is None or record is None:
            return
        self.channels.publish(user_id, message_type, record.model_dump(mode="json"))

    # ------------------------------------------------------------------
    # Agent state
    # ------------------------------------------------------------------

    def _load_state(self, user_id: str) -> AgentStateName:
        try:
            with self.database.session_scope() as db:
                current = db.execute(
                    select(AgentState.current_state).where(AgentState.user_id == user_id)
                ).scalar_one_or_none()
        except Exception as e:
            logger.error(
                f"Could not load agent state, assuming idle: {e}",
                extra={"user_id": user_id},
            )
            return AgentStateName.IDLE
        return AgentStateName(current) if current else AgentStateName.IDLE

    def _save_state(
        self,
        db,
        request: OrchestrationRequest,
        previous_state: AgentStateName,
        state: AgentStateName,
        risk_level: Optional[RiskLevel],
        risk_score: Optional[int],
    ) -> Dict[str, Any]:
        now = self._clock()
        existing = db.get(AgentState, request.user_id)
        state_data = dict(existing.state_data or {}) if existing is not None else {}
        state_data.update({
            "last_event": {
                "event_type": request.event_type,
                "session_id": request.session_id,
                "event_data": request.event_data,
                "at": now.isoformat(),
            },
            "last_run_id": request.run_id,
        })
        if risk_level is not None:
            state_data["last_risk_level"] = risk_level.value
            state_data["last_risk_score"] = risk_score

        changed = existing is None or existing.current_state != state.value
        last_transition_at = now if changed else existing.last_transition_at
        values = {
            "current_state": state.value,
            "state_data": state_data,
            "last_transition_at": last_transition_at,
        }
        upsert(
            db,
            AgentState,
            values={"user_id": request.user_id, **values},
            conflict_columns=("user_id",),
            update_values=values,
        )
        if request.event_id:
            db.execute(
                update(BehavioralEvent)
                .where(BehavioralEvent.id == request.event_id)
                .values(processed=True)
            )
        return {
            "previous_state": previous_state.value,
            "state": state.value,
            "state_changed": state != previous_state,
        }

    @staticmethod
    def _feedback_request(request: OrchestrationRequest) -> FeedbackRequest:
        data = request.event_data
        feedback_type = data.get("feedback_type") or _DEFAULT_FEEDBACK[request.event_type]
        intervention_type = data.get("intervention_type")
        return FeedbackRequest(
            user_id=request.user_id,
            intervention_id=data.get("intervention_id"),
            intervention_type=InterventionType(intervention_type) if intervention_type else None,
            feedback_type=FeedbackType(feedback_type),
            context=dict(data.get("context") or {}),
        )
