"""Behavioral Engine Service - business logic behind the API Gateway.

Wires the pipeline together and gives the HTTP layer a small surface:
event ingestion, intervention responses, synchronous orchestration, reads,
and the guardian views.

Design principles:
- Ingestion commits each event in its own transaction, then hands the
  orchestrator run off without waiting
- A dispatch failure never fails the ingestion response
- Every call writes an execution-log record
"""

import logging
import time
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from behavioral_engine.agents.feedback import FeedbackAgent, RespondRequest, ResponseHandler
from behavioral_engine.agents.intervention import (
    EnforcementActuator,
    GuardianNotifier,
    InterventionAgent,
)
from behavioral_engine.agents.risk import RiskAgent
from behavioral_engine.api.schemas import (
    ChildStats,
    ChildSummary,
    EventIn,
    EventResult,
    IngestResponse,
    OrchestrateRequest,
    OrchestrateResponse,
    RespondResponse,
)
from behavioral_engine.common.config import Config, ExecutionLogStorage, get_config
from behavioral_engine.common.constants import DataConstants
from behavioral_engine.common.exceptions import NotFoundError
from behavioral_engine.common.time import Clock, to_naive_utc, utc_now
from behavioral_engine.data.db import Database, get_database
from behavioral_engine.data.models import (
    BehavioralEvent,
    FamilyLink,
    Intervention,
    Profile,
    RiskHistory,
    RiskState,
    UserSession,
)
from behavioral_engine.data.schemas.event import SESSION_OPEN_EVENTS, EventType
from behavioral_engine.data.schemas.intervention import (
    OPEN_STATUSES,
    InterventionRecord,
    InterventionStatus,
)
from behavioral_engine.data.schemas.policy import PolicyUpdate, ResolvedPolicy
from behavioral_engine.data.schemas.risk import RiskHistoryRecord, RiskStateRecord
from behavioral_engine.governance.audit import (
    BackgroundExecutionLogWriter,
    DatabaseExecutionLogStore,
    ExecutionLogger,
    FileExecutionLogStore,
)
from behavioral_engine.governance.policies import PolicyResolver, load_pipeline_defaults
from behavioral_engine.governance.schemas import AgentType
from behavioral_engine.monitoring.metrics import MetricsCollector
from behavioral_engine.orchestration import (
    OrchestrationDispatcher,
    OrchestrationRequest,
    Orchestrator,
)
from behavioral_engine.realtime import ChannelRegistry
from behavioral_engine.registry import SessionRegistry

logger = logging.getLogger(__name__)


class BehavioralEngineService:
    """Service behind every gateway endpoint.

    Error Handling:
    - Per-event ingestion failures are reported in ``results``, not raised
    - Orchestrator failures never reach the caller of ``ingest``
    - Ownership violations raise NotFoundError without saying which
    """

    def __init__(
        self,
        database: Database,
        policy_resolver: PolicyResolver,
        registry: SessionRegistry,
        dispatcher: OrchestrationDispatcher,
        response_handler: ResponseHandler,
        channels: ChannelRegistry,
        execution_logger: ExecutionLogger,
        metrics: Optional[MetricsCollector] = None,
        clock: Clock = utc_now,
        realtime_poll_seconds: float = 1.0,
    ):
        self.database = database
        self.policy_resolver = policy_resolver
        self.registry = registry
        self.dispatcher = dispatcher
        self.response_handler = response_handler
        self.channels = channels
        self.execution_logger = execution_logger
        self.metrics = metrics
        self.realtime_poll_seconds = realtime_poll_seconds
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        database: Optional[Database] = None,
        clock: Clock = utc_now,
        executor=None,
        actuator: Optional[EnforcementActuator] = None,
        notifier: Optional[GuardianNotifier] = None,
    ) -> "BehavioralEngineService":
        """Build the full pipeline from configuration.

        Creates tables and seeds the default policy and templates.
        """
        config = config or get_config()
        database = database or get_database()
        database.create_all()

        policy_resolver = PolicyResolver(load_pipeline_defaults(config.pipeline_defaults_file), clock)
        with database.session_scope() as db:
            policy_resolver.seed_defaults(db)

        if config.execution_log_storage == ExecutionLogStorage.LOCAL:
            store = FileExecutionLogStore(str(config.execution_log_dir))
        else:
            store = DatabaseExecutionLogStore(database)
        if config.background_execution_log:
            store = BackgroundExecutionLogWriter(store)
        execution_logger = ExecutionLogger(store)

        metrics = None
        if config.metrics_enabled:
            metrics = MetricsCollector(namespace=config.metrics_namespace, region=config.aws_region)

        channels = ChannelRegistry(mailbox_size=config.realtime_mailbox_size)
        risk_agent = RiskAgent(policy_resolver, clock=clock)
        orchestrator = Orchestrator(
            database=database,
            risk_agent=risk_agent,
            intervention_agent=InterventionAgent(
                policy_resolver, actuator=actuator, notifier=notifier, clock=clock
            ),
            feedback_agent=FeedbackAgent(risk_agent, clock=clock),
            execution_logger=execution_logger,
            channels=channels,
            metrics=metrics,
            clock=clock,
        )
        dispatcher = OrchestrationDispatcher(
            orchestrator,
            execution_logger=execution_logger,
            max_workers=config.orchestrator_workers,
            executor=executor,
        )
        return cls(
            database=database,
            policy_resolver=policy_resolver,
            registry=SessionRegistry(
                clock=clock, idle_timeout_minutes=config.session_idle_timeout_minutes
            ),
            dispatcher=dispatcher,
            response_handler=ResponseHandler(clock=clock),
            channels=channels,
            execution_logger=execution_logger,
            metrics=metrics,
            clock=clock,
            realtime_poll_seconds=config.realtime_poll_seconds,
        )

    def shutdown(self) -> None:
        """Stop the dispatcher, close channels, flush logs and metrics."""
        self.dispatcher.shutdown(wait=True)
        self.channels.close_all()
        self.execution_logger.shutdown()
        if self.metrics is not None:
            self.metrics.shutdown()
        logger.info("BehavioralEngineService shutdown complete")

    # =========================================================================
    # INGESTION
    # =========================================================================

    def ingest(self, user_id: str, events: List[EventIn]) -> IngestResponse:
        """Record events and trigger evaluation for each.

        Returns:
            The session and device of the last accepted event, plus one
            result per event in order.
        """
        started = time.perf_counter()
        results: List[EventResult] = []
        session_id: Optional[str] = None
        device_id: Optional[str] = None

        for event in events:
            try:
                with self.database.session_scope() as db:
                    event_id, session_id, device_id = self._ingest_one(db, user_id, event)
            except Exception as e:
                logger.error(
                    f"Failed to ingest event: {type(e).__name__}: {e}",
                    extra={"user_id": user_id, "event_type": event.event_type.value},
                    exc_info=True,
                )
                results.append(EventResult(success=False, error="Failed to record event"))
                continue

            results.append(EventResult(success=True, event_id=event_id))
            self.dispatcher.dispatch(OrchestrationRequest.create(
                user_id=user_id,
                event_type=event.event_type.value,
                session_id=session_id,
                event_data=event.event_data,
                event_id=event_id,
            ))

        accepted = sum(1 for r in results if r.success)
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.execution_logger.log_stage(
            agent_type=AgentType.GATEWAY,
            user_id=user_id,
            session_id=session_id,
            input_data={
                "event_count": len(events),
                "event_types": [e.event_type.value for e in events],
            },
            output_data={"accepted": accepted, "rejected": len(results) - accepted},
            execution_time_ms=elapsed_ms,
            success=accepted == len(results),
            error_message=None if accepted == len(results) else "Some events were not recorded",
        )
        if self.metrics is not None:
            self.metrics.record_ingestion(accepted, len(results) - accepted)

        return IngestResponse(
            success=accepted == len(results),
            session_id=session_id,
            device_id=device_id,
            results=results,
            execution_time_ms=round(elapsed_ms, 3),
        )

    def _ingest_one(
        self, db: Session, user_id: str, event: EventIn
    ) -> Tuple[str, Optional[str], str]:
        now = self._clock()
        device_id = self.registry.upsert_device(
            db,
            user_id=user_id,
            device_identifier=event.device_identifier,
            platform=event.platform,
            device_name=event.device_name,
            os_version=event.os_version,
            app_version=event.app_version,
        )
        resolution = self.registry.apply_lifecycle(db, user_id, device_id, event.event_type)
        timestamp = to_naive_utc(event.timestamp) if event.timestamp else now

        row = BehavioralEvent(
            user_id=user_id,
            device_id=device_id,
            session_id=resolution.session_id,
            event_type=event.event_type.value,
            event_data=event.event_data,
            screen_name=event.screen_name,
            timestamp=timestamp,
            processed=False,
            created_at=now,
        )
        db.add(row)
        db.flush()

        # A warm start is also a reopen fact
        if resolution.is_reopen and event.event_type in SESSION_OPEN_EVENTS:
            db.add(BehavioralEvent(
                user_id=user_id,
                device_id=device_id,
                session_id=resolution.session_id,
                event_type=EventType.REOPEN.value,
                event_data={
                    "synthesized": True,
                    "source_event_id": row.id,
                    "reopen_count": resolution.reopen_count,
                },
                screen_name=event.screen_name,
                timestamp=timestamp,
                processed=True,
                created_at=now,
            ))
            db.flush()

        return row.id, resolution.session_id, device_id

    # =========================================================================
    # RESPONSES
    # =========================================================================

    def respond(self, user_id: str, request: RespondRequest) -> RespondResponse:
        """Apply a response, then trigger feedback evaluation.

        Raises:
            NotFoundError: If the intervention is not the caller's
            InvalidTransitionError: If the status would move backwards
        """
        with self.execution_logger.track(
            AgentType.RESPONSE_HANDLER,
            user_id=user_id,
            input_data=request.model_dump(mode="json"),
        ) as record:
            with self.database.session_scope() as db:
                result = self.response_handler.respond(db, user_id, request)
            record.session_id = result.intervention.session_id
            record.output = {
                "intervention_id": result.intervention.id,
                "new_status": result.new_status.value,
                "feedback_type": result.feedback_type.value,
            }

        self.dispatcher.dispatch(OrchestrationRequest.create(
            user_id=user_id,
            event_type=result.event_type,
            session_id=result.intervention.session_id,
            event_data={
                "intervention_id": result.intervention.id,
                "intervention_type": result.intervention.type.value,
                "feedback_type": result.feedback_type.value,
                "action": request.action.value,
                "context": request.context,
            },
        ))
        return RespondResponse(success=True, new_status=result.new_status)

    # =========================================================================
    # ORCHESTRATION (synchronous)
    # =========================================================================

    def orchestrate(self, user_id: str, request: OrchestrateRequest) -> OrchestrateResponse:
        if request.user_id is not None and request.user_id != user_id:
            raise NotFoundError("user")
        result = self.dispatcher.run_sync(OrchestrationRequest.create(
            user_id=user_id,
            event_type=request.event_type,
            session_id=request.session_id,
            event_data=request.event_data,
        ))
        return OrchestrateResponse(**result.to_response())

    # =========================================================================
    # READS
    # =========================================================================

    def get_risk_state(self, user_id: str) -> Optional[RiskStateRecord]:
        with self.database.session_scope() as db:
            row = db.get(RiskState, user_id)
            return row.to_record() if row is not None else None

    def get_risk_history(
        self, user_id: str, limit: int = DataConstants.DEFAULT_QUERY_LIMIT
    ) -> List[RiskHistoryRecord]:
        limit = max(1, min(limit, DataConstants.MAX_QUERY_LIMIT))
        with self.database.session_scope() as db:
            rows = db.execute(
                select(RiskHistory)
                .where(RiskHistory.user_id == user_id)
                .order_by(RiskHistory.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [RiskHistoryRecord.model_validate(row) for row in rows]

    def list_interventions(
        self,
        user_id: str,
        status: Optional[InterventionStatus] = None,
        limit: int = DataConstants.DEFAULT_QUERY_LIMIT,
    ) -> List[InterventionRecord]:
        limit = max(1, min(limit, DataConstants.MAX_QUERY_LIMIT))
        stmt = (
            select(Intervention)
            .where(Intervention.user_id == user_id)
            .order_by(Intervention.created_at.desc())
            .limit(limit)
        )
        if status is not None:
            stmt = stmt.where(Intervention.status == status.value)
        with self.database.session_scope() as db:
            return [row.to_record() for row in db.execute(stmt).scalars().all()]

    def snapshot(self, user_id: str) -> Dict[str, Any]:
        """Current state sent to a (re)connecting realtime client."""
        risk_state = self.get_risk_state(user_id)
        with self.database.session_scope() as db:
            open_rows = db.execute(
                select(Intervention)
                .where(
                    Intervention.user_id == user_id,
                    Intervention.status.in_(OPEN_STATUSES),
                )
                .order_by(Intervention.created_at.desc())
            ).scalars().all()
            interventions = [row.to_record().model_dump(mode="json") for row in open_rows]
        return {
            "risk_state": risk_state.model_dump(mode="json") if risk_state else None,
            "open_interventions": interventions,
        }

    # =========================================================================
    # GUARDIAN VIEWS
    # =========================================================================

    def list_children(self, guardian_id: str) -> List[ChildSummary]:
        with self.database.session_scope() as db:
            rows = db.execute(
                select(FamilyLink, Profile.display_name, RiskState)
                .outerjoin(Profile, Profile.user_id == FamilyLink.user_id)
                .outerjoin(RiskState, RiskState.user_id == FamilyLink.user_id)
                .where(
                    FamilyLink.guardian_id == guardian_id,
                    FamilyLink.is_active.is_(True),
                )
                .order_by(FamilyLink.created_at)
            ).all()
            return [
                ChildSummary(
                    user_id=link.user_id,
                    display_name=display_name,
                    linked_at=link.created_at,
                    risk_state=risk.to_record() if risk is not None else None,
                )
                for link, display_name, risk in rows
            ]

    def child_stats(self, guardian_id: str, user_id: str) -> ChildStats:
        now = self._clock()
        since = now - timedelta(days=DataConstants.GUARDIAN_STATS_DAYS)
        with self.database.session_scope() as db:
            self._require_link(db, guardian_id, user_id)
            sessions = db.execute(
                select(UserSession.started_at, UserSession.duration_seconds).where(
                    UserSession.user_id == user_id,
                    UserSession.started_at >= since,
                )
            ).all()
            day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
            seconds = [
                (started_at, duration if duration is not None
                 else max(0, int((now - started_at).total_seconds())))
                for started_at, duration in sessions
            ]
            total_seconds = sum(s for _, s in seconds)
            minutes_today = sum(s for started_at, s in seconds if started_at >= day_start) // 60
            policy = self.policy_resolver.resolve(db, user_id)
            interventions = db.execute(
                select(Intervention.type, Intervention.status).where(
                    Intervention.user_id == user_id,
                    Intervention.created_at >= since,
                )
            ).all()
            risk = db.get(RiskState, user_id)
            return ChildStats(
                user_id=user_id,
                period_days=DataConstants.GUARDIAN_STATS_DAYS,
                session_count=len(sessions),
                total_minutes=total_seconds // 60,
                minutes_today=minutes_today,
                daily_limit_minutes=policy.daily_limit_minutes,
                daily_limit_reached=minutes_today >= policy.daily_limit_minutes,
                interventions_by_type=dict(Counter(row.type for row in interventions)),
                interventions_by_status=dict(Counter(row.status for row in interventions)),
                risk_state=risk.to_record() if risk is not None else None,
            )

    def child_interventions(
        self,
        guardian_id: str,
        user_id: str,
        status: Optional[InterventionStatus] = None,
        limit: int = DataConstants.DEFAULT_QUERY_LIMIT,
    ) -> List[InterventionRecord]:
        with self.database.session_scope() as db:
            self._require_link(db, guardian_id, user_id)
        return self.list_interventions(user_id, status=status, limit=limit)

    def update_child_policy(
        self, guardian_id: str, user_id: str, changes: PolicyUpdate
    ) -> ResolvedPolicy:
        with self.database.session_scope() as db:
            return self.policy_resolver.update_policy(db, guardian_id, user_id, changes)

    @staticmethod
    def _require_link(db: Session, guardian_id: str, user_id: str) -> None:
        linked = db.execute(
            select(FamilyLink.id).where(
                FamilyLink.guardian_id == guardian_id,
                FamilyLink.user_id == user_id,
                FamilyLink.is_active.is_(True),
            )
        ).first()
        if linked is None:
            raise NotFoundError("user")
