"""Policy Resolver - picks the thresholds that apply to a user.

Resolution order: the active policy targeted at the user, else the active
system default row, else the YAML defaults.
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from sqlalchemy import select
from sqlalchemy.orm import Session

from behavioral_engine.common.exceptions import ConfigurationError, NotFoundError
from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import FamilyLink, InterventionTemplate, Policy
from behavioral_engine.data.schemas.policy import (
    PipelineDefaults,
    PolicyThresholds,
    PolicyUpdate,
    ResolvedPolicy,
)

logger = logging.getLogger(__name__)

_THRESHOLD_FIELDS = tuple(PolicyThresholds.model_fields)


def load_pipeline_defaults(path: Path) -> PipelineDefaults:
    """Load and validate the defaults file.

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Pipeline defaults file not found: {path}",
            details={"path": str(path)},
        )

    with open(path, "r") as f:
        raw_config = yaml.safe_load(f) or {}

    try:
        return PipelineDefaults.model_validate(raw_config)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid pipeline defaults file: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


class PolicyResolver:
    """Resolves and updates threshold policies."""

    def __init__(self, defaults: Optional[PipelineDefaults] = None, clock: Clock = utc_now):
        self.defaults = defaults or PipelineDefaults()
        self._clock = clock

    @property
    def defaults_version(self) -> str:
        return self.defaults.metadata.version

    def resolve(self, db: Session, user_id: str) -> ResolvedPolicy:
        """Most specific active policy for the user."""
        row = db.execute(
            select(Policy)
            .where(Policy.is_active.is_(True))
            .where(
                (Policy.target_user_id == user_id) | (Policy.is_system_default.is_(True))
            )
            .order_by(Policy.is_system_default.asc(), Policy.updated_at.desc())
            .limit(1)
        ).scalar_one_or_none()

        if row is None:
            return ResolvedPolicy(
                **self.defaults.system_policy.model_dump(),
                source="defaults",
            )

        return ResolvedPolicy(
            **{name: getattr(row, name) for name in _THRESHOLD_FIELDS},
            policy_id=row.id,
            source="system_default" if row.is_system_default else "user",
        )

    def update_policy(
        self,
        db: Session,
        guardian_id: str,
        user_id: str,
        changes: PolicyUpdate,
    ) -> ResolvedPolicy:
        """Create or update the guardian-owned policy for a linked user.

        Raises:
            NotFoundError: If the guardian has no active link to the user
        """
        link = db.execute(
            select(FamilyLink).where(
                FamilyLink.guardian_id == guardian_id,
                FamilyLink.user_id == user_id,
                FamilyLink.is_active.is_(True),
            )
        ).scalar_one_or_none()
        if link is None:
            raise NotFoundError("user")

        now = self._clock()
        row = db.execute(
            select(Policy).where(
                Policy.target_user_id == user_id,
                Policy.owner_id == guardian_id,
                Policy.is_active.is_(True),
            )
        ).scalar_one_or_none()

        if row is None:
            base = self.resolve(db, user_id)
            row = Policy(
                owner_id=guardian_id,
                target_user_id=user_id,
                is_system_default=False,
                is_active=True,
                created_at=now,
                **{name: getattr(base, name) for name in _THRESHOLD_FIELDS},
            )
            db.add(row)

        for name, value in changes.model_dump(exclude_none=True).items():
            setattr(row, name, value)
        row.updated_at = now
        db.flush()

        logger.info(
            "Policy updated",
            extra={"guardian_id": guardian_id, "user_id": user_id, "policy_id": row.id},
        )
        return self.resolve(db, user_id)

    def seed_defaults(self, db: Session) -> int:
        """Insert the system policy and any missing templates.

        Returns:
            Number of rows inserted.
        """
        inserted = 0
        has_default = db.execute(
            select(Policy.id).where(Policy.is_system_default.is_(True)).limit(1)
        ).first()
        if has_default is None:
            now = self._clock()
            db.add(Policy(
                is_system_default=True,
                is_active=True,
                created_at=now,
                updated_at=now,
                **self.defaults.system_policy.model_dump(),
            ))
            inserted += 1

        existing = set(db.execute(select(InterventionTemplate.name)).scalars())
        for spec in self.defaults.templates:
            if spec.name not in existing:
                db.add(InterventionTemplate.from_spec(spec))
                inserted += 1

        db.flush()
        if inserted:
            logger.info(f"Seeded {inserted} default rows (defaults v{self.defaults_version})")
        return inserted
