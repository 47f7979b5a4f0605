"""Intervention schemas - types, statuses and the tagged payload union.

The core only ever produces a tag and a payload. Rendering belongs to the
presentation collaborator, which switches on ``type``.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field

from behavioral_engine.data.schemas.risk import RiskLevel


class InterventionType(str, Enum):
    """Graduated intervention tiers."""
    SOFT_NUDGE = "soft_nudge"
    MEDIUM_FRICTION = "medium_friction"
    HARD_BLOCK = "hard_block"
    PARENT_ALERT = "parent_alert"


class InterventionStatus(str, Enum):
    """Intervention lifecycle. Never moves backwards."""
    PENDING = "pending"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self.rank == _TERMINAL_RANK

    def can_transition_to(self, new_status: "InterventionStatus") -> bool:
        """Whether moving to ``new_status`` keeps the status monotonic.

        Staying put is allowed for open statuses (snooze). Terminal
        statuses never change.
        """
        if self.is_terminal:
            return False
        return new_status.rank >= self.rank


_TERMINAL_RANK = 2
_STATUS_RANK = {
    InterventionStatus.PENDING: 0,
    InterventionStatus.DELIVERED: 1,
    InterventionStatus.ACKNOWLEDGED: _TERMINAL_RANK,
    InterventionStatus.DISMISSED: _TERMINAL_RANK,
    InterventionStatus.ESCALATED: _TERMINAL_RANK,
}

OPEN_STATUSES = (InterventionStatus.PENDING.value, InterventionStatus.DELIVERED.value)

# Statuses that keep a type inside its cooldown window
COOLDOWN_STATUSES = OPEN_STATUSES + (InterventionStatus.ESCALATED.value,)


class ResponseAction(str, Enum):
    """Actions a user can take on a delivered intervention."""
    ACKNOWLEDGE = "acknowledge"
    DISMISS = "dismiss"
    SNOOZE = "snooze"
    ACTION_TAKEN = "action_taken"
    REQUEST_EXTENSION = "request_extension"


class FeedbackType(str, Enum):
    """Outcome recorded for later tuning."""
    EFFECTIVE = "effective"
    INEFFECTIVE = "ineffective"
    IGNORED = "ignored"


# Allowed intervention types per risk level, in the order they are offered
LEVEL_INTERVENTION_TYPES: Dict[RiskLevel, tuple] = {
    RiskLevel.LOW: (),
    RiskLevel.MEDIUM: (InterventionType.SOFT_NUDGE,),
    RiskLevel.HIGH: (InterventionType.SOFT_NUDGE, InterventionType.MEDIUM_FRICTION),
    RiskLevel.CRITICAL: (
        InterventionType.MEDIUM_FRICTION,
        InterventionType.HARD_BLOCK,
        InterventionType.PARENT_ALERT,
    ),
}


# =============================================================================
# TAGGED PAYLOAD UNION
# =============================================================================

class _PayloadBase(BaseModel):
    title: str
    message: str
    action_label: Optional[str] = None
    action_url: Optional[str] = None


class SoftNudge(_PayloadBase):
    """Dismissible reminder."""
    type: Literal["soft_nudge"] = "soft_nudge"


class MediumFriction(_PayloadBase):
    """Modal that asks the user to confirm before continuing."""
    type: Literal["medium_friction"] = "medium_friction"
    requires_acknowledgement: bool = True


class HardBlock(_PayloadBase):
    """Blocking screen, backed by the enforcement actuator."""
    type: Literal["hard_block"] = "hard_block"
    block_minutes: int = Field(default=30, ge=1)
    allow_extension_request: bool = True


class ParentAlert(_PayloadBase):
    """Notice that a guardian has been alerted."""
    type: Literal["parent_alert"] = "parent_alert"
    guardian_notified: bool = False


InterventionPayload = Annotated[
    Union[SoftNudge, MediumFriction, HardBlock, ParentAlert],
    Field(discriminator="type"),
]

_PAYLOAD_CLASSES = {
    InterventionType.SOFT_NUDGE: SoftNudge,
    InterventionType.MEDIUM_FRICTION: MediumFriction,
    InterventionType.HARD_BLOCK: HardBlock,
    InterventionType.PARENT_ALERT: ParentAlert,
}


def build_payload(
    intervention_type: InterventionType,
    title: str,
    message: str,
    action_label: Optional[str] = None,
    action_url: Optional[str] = None,
    **extra: Any,
) -> Union[SoftNudge, MediumFriction, HardBlock, ParentAlert]:
    """Build the payload variant for a type."""
    payload_cls = _PAYLOAD_CLASSES[InterventionType(intervention_type)]
    return payload_cls(
        title=title,
        message=message,
        action_label=action_label,
        action_url=action_url,
        **extra,
    )


# =============================================================================
# RECORDS
# =============================================================================

class TemplateSpec(BaseModel):
    """Intervention template definition (catalog entry)."""
    type: InterventionType
    name: str
    title: str
    message: str
    action_label: Optional[str] = None
    action_url: Optional[str] = None
    priority: int = Field(default=0)
    min_risk_level: RiskLevel = RiskLevel.LOW
    cooldown_minutes: int = Field(default=30, ge=0)
    is_active: bool = True


class InterventionRecord(BaseModel):
    """An instantiated decision as returned to callers and subscribers."""
    id: str
    user_id: str
    template_id: Optional[str] = None
    session_id: Optional[str] = None
    type: InterventionType
    status: InterventionStatus
    risk_level_at_trigger: RiskLevel
    risk_score_at_trigger: int
    payload: InterventionPayload
    user_response: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    delivered_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None
