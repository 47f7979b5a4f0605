"""Response Handler - applies a user's response to an intervention.

Status only ever moves forward: pending < delivered < {acknowledged,
dismissed, escalated}. Snoozing keeps the status and bumps a counter.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from behavioral_engine.agents.feedback.schema import RespondRequest, RespondResult, ResponseEvent
from behavioral_engine.common.exceptions import InvalidTransitionError, NotFoundError
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import Intervention
from behavioral_engine.data.schemas.intervention import (
    FeedbackType,
    InterventionStatus,
    ResponseAction,
)

logger = logging.getLogger(__name__)

# action -> (new status or None to keep, feedback, orchestrator event)
ACTION_OUTCOMES: Dict[ResponseAction, Tuple[Optional[InterventionStatus], FeedbackType, str]] = {
    ResponseAction.ACKNOWLEDGE: (
        InterventionStatus.ACKNOWLEDGED, FeedbackType.EFFECTIVE, ResponseEvent.ACKNOWLEDGED
    ),
    ResponseAction.ACTION_TAKEN: (
        InterventionStatus.ACKNOWLEDGED, FeedbackType.EFFECTIVE, ResponseEvent.ACKNOWLEDGED
    ),
    ResponseAction.REQUEST_EXTENSION: (
        InterventionStatus.ACKNOWLEDGED, FeedbackType.EFFECTIVE, ResponseEvent.ACKNOWLEDGED
    ),
    ResponseAction.DISMISS: (
        InterventionStatus.DISMISSED, FeedbackType.INEFFECTIVE, ResponseEvent.DISMISSED
    ),
    ResponseAction.SNOOZE: (None, FeedbackType.IGNORED, ResponseEvent.SNOOZED),
}


class ResponseHandler:
    """Mutates interventions on behalf of their owner."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock

    def respond(self, db: Session, user_id: str, request: RespondRequest) -> RespondResult:
        """Apply ``request.action`` to the caller's intervention.

        Raises:
            NotFoundError: If the intervention is missing or not the caller's
            InvalidTransitionError: If the status would move backwards
        """
        row = db.get(Intervention, request.intervention_id, with_for_update=True)
        if row is None or row.user_id != user_id:
            raise NotFoundError("intervention")

        current = InterventionStatus(row.status)
        target, feedback_type, event_type = ACTION_OUTCOMES[request.action]
        new_status = target or current

        if not current.can_transition_to(new_status):
            raise InvalidTransitionError(current.value, new_status.value)

        now = self._clock()
        response: Dict[str, Any] = dict(row.user_response or {})
        response["action"] = request.action.value
        response["responded_at"] = now.isoformat()
        if request.context:
            response["context"] = request.context

        if request.action == ResponseAction.SNOOZE:
            response["snooze_count"] = int(response.get("snooze_count", 0)) + 1
            response["snoozed_at"] = now.isoformat()
        elif request.action == ResponseAction.REQUEST_EXTENSION:
            response["requested_extension"] = True
        elif request.action == ResponseAction.ACTION_TAKEN:
            response["action_taken"] = True

        row.status = new_status.value
        row.user_response = response
        row.updated_at = now
        if new_status == InterventionStatus.ACKNOWLEDGED:
            row.acknowledged_at = now
        elif new_status == InterventionStatus.DISMISSED:
            row.dismissed_at = now
        db.flush()

        logger.info(
            f"Intervention {request.action.value}: {current.value} -> {new_status.value}",
            extra={"user_id": user_id, "intervention_id": row.id},
        )
        return RespondResult(
            new_status=new_status,
            feedback_type=feedback_type,
            event_type=event_type,
            intervention=row.to_record(),
        )
