"""ORM models for the behavioral engine store."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from behavioral_engine.common.time import utc_now
from behavioral_engine.data.db import Base
from behavioral_engine.data.schemas.intervention import (
    InterventionRecord,
    InterventionType,
    TemplateSpec,
    build_payload,
)
from behavioral_engine.data.schemas.risk import RiskStateRecord


def new_id() -> str:
    return str(uuid4())


class Profile(Base):
    """User profile. Only the timezone matters to the pipeline."""
    __tablename__ = "profiles"

    user_id = Column(String(64), primary_key=True)
    display_name = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    created_at = Column(DateTime, nullable=False, default=utc_now)


class FamilyLink(Base):
    """Guardian to user link."""
    __tablename__ = "family_links"

    id = Column(String(36), primary_key=True, default=new_id)
    guardian_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("guardian_id", "user_id", name="uq_family_links_pair"),
    )


class Device(Base):
    """A device install. Upserted on (user_id, device_identifier)."""
    __tablename__ = "devices"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    device_identifier = Column(String(255), nullable=False)
    device_name = Column(String(255), nullable=True)
    platform = Column(String(32), nullable=False, default="unknown")
    os_version = Column(String(64), nullable=True)
    app_version = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_seen_at = Column(DateTime, nullable=False, default=utc_now)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        UniqueConstraint("user_id", "device_identifier", name="uq_devices_user_identifier"),
    )


class UserSession(Base):
    """App session for one (user, device).

    The partial unique index allows at most one active row per pair.
    """
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    device_id = Column(String(36), ForeignKey("devices.id"), nullable=False)
    state = Column(String(16), nullable=False, default="active")
    started_at = Column(DateTime, nullable=False, default=utc_now)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    reopen_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index(
            "uq_sessions_active_device",
            "user_id",
            "device_id",
            unique=True,
            sqlite_where=text("state = 'active'"),
            postgresql_where=text("state = 'active'"),
        ),
    )


class BehavioralEvent(Base):
    """Write-once behavioral fact."""
    __tablename__ = "behavioral_events"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    device_id = Column(String(36), ForeignKey("devices.id"), nullable=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=True)
    event_type = Column(String(32), nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    screen_name = Column(String(255), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utc_now)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_behavioral_events_user_time", "user_id", "timestamp"),
    )


class RiskState(Base):
    """Current risk for a user, overwritten on every evaluation."""
    __tablename__ = "risk_states"

    user_id = Column(String(64), primary_key=True)
    current_level = Column(String(16), nullable=False, default="low")
    score = Column(Integer, nullable=False, default=0)
    session_duration_factor = Column(Integer, nullable=False, default=0)
    reopen_frequency_factor = Column(Integer, nullable=False, default=0)
    late_night_factor = Column(Integer, nullable=False, default=0)
    scroll_velocity_factor = Column(Integer, nullable=False, default=0)
    last_evaluated_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    def to_record(self) -> RiskStateRecord:
        return RiskStateRecord.model_validate(self)


class RiskHistory(Base):
    """Level change audit row."""
    __tablename__ = "risk_history"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    previous_level = Column(String(16), nullable=False)
    new_level = Column(String(16), nullable=False)
    score = Column(Integer, nullable=False)
    factors = Column(JSON, nullable=False, default=dict)
    triggered_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class InterventionTemplate(Base):
    """Intervention catalog entry. Read-only at evaluation time."""
    __tablename__ = "intervention_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    type = Column(String(32), nullable=False, index=True)
    name = Column(String(64), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_label = Column(String(64), nullable=True)
    action_url = Column(String(255), nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    min_risk_level = Column(String(16), nullable=False, default="low")
    cooldown_minutes = Column(Integer, nullable=True, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    @classmethod
    def from_spec(cls, spec: TemplateSpec) -> "InterventionTemplate":
        return cls(
            type=spec.type.value,
            name=spec.name,
            title=spec.title,
            message=spec.message,
            action_label=spec.action_label,
            action_url=spec.action_url,
            priority=spec.priority,
            min_risk_level=spec.min_risk_level.value,
            cooldown_minutes=spec.cooldown_minutes,
            is_active=spec.is_active,
        )


class Intervention(Base):
    """Instantiated intervention decision."""
    __tablename__ = "interventions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False)
    template_id = Column(String(36), ForeignKey("intervention_templates.id"), nullable=True)
    session_id = Column(String(36), nullable=True)
    type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default="pending")
    risk_level_at_trigger = Column(String(16), nullable=False)
    risk_score_at_trigger = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    action_label = Column(String(64), nullable=True)
    action_url = Column(String(255), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    user_response = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    delivered_at = Column(DateTime, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    dismissed_at = Column(DateTime, nullable=True)
    escalated_at = Column(DateTime, nullable=True)
    escalation_reason = Column(String(32), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_interventions_user_status", "user_id", "status", "created_at"),
    )

    def to_record(self) -> InterventionRecord:
        extra = {k: v for k, v in (self.payload or {}).items()
                 if k not in ("type", "title", "message", "action_label", "action_url")}
        payload = build_payload(
            InterventionType(self.type),
            title=self.title,
            message=self.message,
            action_label=self.action_label,
            action_url=self.action_url,
            **extra,
        )
        return InterventionRecord(
            id=self.id,
            user_id=self.user_id,
            template_id=self.template_id,
            session_id=self.session_id,
            type=self.type,
            status=self.status,
            risk_level_at_trigger=self.risk_level_at_trigger,
            risk_score_at_trigger=self.risk_score_at_trigger,
            payload=payload,
            user_response=dict(self.user_response or {}),
            created_at=self.created_at,
            delivered_at=self.delivered_at,
            acknowledged_at=self.acknowledged_at,
            dismissed_at=self.dismissed_at,
            escalated_at=self.escalated_at,
        )


class Policy(Base):
    """Threshold policy, either a system default or targeted at one user."""
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True, default=new_id)
    owner_id = Column(String(64), nullable=True)
    target_user_id = Column(String(64), nullable=True, index=True)
    is_system_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    session_limit_minutes = Column(Integer, nullable=False, default=60)
    daily_limit_minutes = Column(Integer, nullable=False, default=180)
    reopen_threshold = Column(Integer, nullable=False, default=5)
    scroll_velocity_threshold = Column(Float, nullable=False, default=1000.0)
    bedtime_start = Column(String(5), nullable=False, default="22:00")
    bedtime_end = Column(String(5), nullable=False, default="07:00")
    escalation_enabled = Column(Boolean, nullable=False, default=True)
    escalation_delay_minutes = Column(Integer, nullable=False, default=15)
    parent_alert_threshold = Column(Integer, nullable=False, default=75)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class AgentState(Base):
    """Per-user state machine cursor."""
    __tablename__ = "agent_states"

    user_id = Column(String(64), primary_key=True)
    current_state = Column(String(16), nullable=False, default="idle")
    state_data = Column(JSON, nullable=False, default=dict)
    last_transition_at = Column(DateTime, nullable=False, default=utc_now)


class AgentLog(Base):
    """Structured execution-log record, one per pipeline stage run."""
    __tablename__ = "agent_logs"

    id = Column(String(36), primary_key=True)
    agent_type = Column(String(32), nullable=False)
    user_id = Column(String(64), nullable=True, index=True)
    session_id = Column(String(36), nullable=True)
    input_data = Column(JSON, nullable=False, default=dict)
    output_data = Column(JSON, nullable=False, default=dict)
    execution_time_ms = Column(Float, nullable=False, default=0.0)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class FeedbackEvent(Base):
    """Outcome of an intervention response."""
    __tablename__ = "feedback_events"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    intervention_id = Column(String(36), ForeignKey("interventions.id"), nullable=True)
    feedback_type = Column(String(16), nullable=False)
    intervention_type = Column(String(32), nullable=True)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utc_now)
