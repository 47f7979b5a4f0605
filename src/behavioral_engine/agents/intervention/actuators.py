"""Collaborators the decision stage hands severe interventions to.

Both are black boxes to the pipeline. The defaults only log.
"""

import logging
from abc import ABC, abstractmethod

from behavioral_engine.data.schemas.intervention import InterventionRecord

logger = logging.getLogger(__name__)


class EnforcementActuator(ABC):
    """OS-level enforcement hook, engaged for hard_block only."""

    @abstractmethod
    def engage(self, user_id: str, intervention: InterventionRecord) -> None:
        pass


class GuardianNotifier(ABC):
    """Push/email delivery to a guardian, used for parent_alert."""

    @abstractmethod
    def notify(self, guardian_id: str, intervention: InterventionRecord) -> None:
        pass


class LoggingActuator(EnforcementActuator):
    def engage(self, user_id: str, intervention: InterventionRecord) -> None:
        logger.info(
            "Enforcement requested",
            extra={
                "user_id": user_id,
                "intervention_id": intervention.id,
                "block_minutes": getattr(intervention.payload, "block_minutes", None),
            },
        )


class LoggingNotifier(GuardianNotifier):
    def notify(self, guardian_id: str, intervention: InterventionRecord) -> None:
        logger.info(
            "Guardian notification requested",
            extra={
                "guardian_id": guardian_id,
                "user_id": intervention.user_id,
                "intervention_id": intervention.id,
            },
        )
