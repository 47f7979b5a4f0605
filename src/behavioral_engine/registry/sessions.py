"""Device/Session Registry - durable devices and active sessions per user.

Session lifecycle rules run synchronously inside the ingestion request.
The "find active or create" step is one INSERT ... ON CONFLICT against the
partial unique index on (user_id, device_id) WHERE state = 'active', so two
concurrent cold starts for the same device can never produce two active
sessions: the loser of the race becomes a reopen of the winner's row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from behavioral_engine.common.time import Clock, utc_now
from behavioral_engine.data.models import BehavioralEvent, Device, UserSession, new_id
from behavioral_engine.data.schemas.event import (
    SESSION_CLOSE_EVENTS,
    SESSION_OPEN_EVENTS,
    EventType,
    SessionState,
)
from behavioral_engine.data.upsert import upsert

logger = logging.getLogger(__name__)


class SessionAction:
    """What the lifecycle step did to the session table."""
    CREATED = "created"
    REOPENED = "reopened"
    ENDED = "ended"
    ATTACHED = "attached"
    NONE = "none"


@dataclass(frozen=True)
class SessionResolution:
    """Outcome of applying the lifecycle rule for one event."""
    session_id: Optional[str]
    action: str
    reopen_count: int = 0
    duration_seconds: Optional[int] = None

    @property
    def is_reopen(self) -> bool:
        return self.action == SessionAction.REOPENED


class SessionRegistry:
    """Maintains devices and the session lifecycle.

    Args:
        clock: Source of "now" (naive UTC)
        idle_timeout_minutes: An active session whose last event is older
            than this is ended before a new open is applied. None disables.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        idle_timeout_minutes: Optional[int] = 30,
    ):
        self._clock = clock
        self.idle_timeout_minutes = idle_timeout_minutes

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def upsert_device(
        self,
        db: Session,
        user_id: str,
        device_identifier: str,
        platform: str = "unknown",
        device_name: Optional[str] = None,
        os_version: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> str:
        """Create the device on first sight, otherwise refresh it.

        Returns:
            The device id (stable for the (user, identifier) pair).
        """
        now = self._clock()
        update_values = {
            "platform": platform,
            "last_seen_at": now,
            "is_active": True,
        }
        # Only overwrite optional metadata the client actually sent
        for column, value in (
            ("device_name", device_name),
            ("os_version", os_version),
            ("app_version", app_version),
        ):
            if value is not None:
                update_values[column] = value

        row = upsert(
            db,
            Device,
            values={
                "id": new_id(),
                "user_id": user_id,
                "device_identifier": device_identifier,
                "platform": platform,
                "device_name": device_name,
                "os_version": os_version,
                "app_version": app_version,
                "is_active": True,
                "last_seen_at": now,
                "created_at": now,
            },
            conflict_columns=("user_id", "device_identifier"),
            update_values=update_values,
            returning=(Device.id,),
        )
        return row.id

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def find_active(self, db: Session, user_id: str, device_id: str) -> Optional[UserSession]:
        """The active session for (user, device), if any."""
        return db.execute(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.device_id == device_id,
                UserSession.state == SessionState.ACTIVE.value,
            )
        ).scalar_one_or_none()

    def open_session(self, db: Session, user_id: str, device_id: str) -> SessionResolution:
        """Cold start creates a session, warm start bumps reopen_count.

        Executed as a single conditional upsert. A returned reopen_count of
        zero means the row was just inserted.
        """
        now = self._clock()
        self._end_if_idle(db, user_id, device_id, now)

        row = upsert(
            db,
            UserSession,
            values={
                "id": new_id(),
                "user_id": user_id,
                "device_id": device_id,
                "state": SessionState.ACTIVE.value,
                "started_at": now,
                "reopen_count": 0,
                "updated_at": now,
            },
            conflict_columns=("user_id", "device_id"),
            conflict_where=UserSession.state == SessionState.ACTIVE.value,
            update_values={
                "reopen_count": UserSession.reopen_count + 1,
                "updated_at": now,
            },
            returning=(UserSession.id, UserSession.reopen_count),
        )

        action = SessionAction.REOPENED if row.reopen_count > 0 else SessionAction.CREATED
        logger.debug(
            "Session %s for user=%s device=%s",
            action, user_id, device_id,
            extra={"session_id": row.id, "reopen_count": row.reopen_count},
        )
        return SessionResolution(
            session_id=row.id,
            action=action,
            reopen_count=row.reopen_count,
        )

    def record_reopen(self, db: Session, user_id: str, device_id: str) -> SessionResolution:
        """Explicit ``reopen`` event: bump the active session, never create one."""
        now = self._clock()
        row = db.execute(
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.device_id == device_id,
                UserSession.state == SessionState.ACTIVE.value,
            )
            .values(reopen_count=UserSession.reopen_count + 1, updated_at=now)
            .returning(UserSession.id, UserSession.reopen_count)
        ).first()
        if row is None:
            return SessionResolution(session_id=None, action=SessionAction.NONE)
        return SessionResolution(
            session_id=row.id,
            action=SessionAction.REOPENED,
            reopen_count=row.reopen_count,
        )

    def close_session(self, db: Session, user_id: str, device_id: str) -> SessionResolution:
        """End the active session and stamp its duration."""
        active = self.find_active(db, user_id, device_id)
        if active is None:
            return SessionResolution(session_id=None, action=SessionAction.NONE)
        return self._end(db, active, self._clock())

    def attach(self, db: Session, user_id: str, device_id: str) -> SessionResolution:
        """Attach the active session id without touching session rows."""
        active = self.find_active(db, user_id, device_id)
        if active is None:
            return SessionResolution(session_id=None, action=SessionAction.NONE)
        return SessionResolution(
            session_id=active.id,
            action=SessionAction.ATTACHED,
            reopen_count=active.reopen_count,
        )

    def apply_lifecycle(
        self,
        db: Session,
        user_id: str,
        device_id: str,
        event_type: EventType,
    ) -> SessionResolution:
        """Apply the session rule for one incoming event."""
        event_type = EventType(event_type)
        if event_type in SESSION_OPEN_EVENTS:
            return self.open_session(db, user_id, device_id)
        if event_type in SESSION_CLOSE_EVENTS:
            return self.close_session(db, user_id, device_id)
        if event_type == EventType.REOPEN:
            return self.record_reopen(db, user_id, device_id)
        return self.attach(db, user_id, device_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _end(self, db: Session, active: UserSession, now: datetime) -> SessionResolution:
        duration = max(0, int((now - active.started_at).total_seconds()))
        result = db.execute(
            update(UserSession)
            .where(
                UserSession.id == active.id,
                UserSession.state == SessionState.ACTIVE.value,
            )
            .values(
                state=SessionState.ENDED.value,
                ended_at=now,
                duration_seconds=duration,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            # A concurrent close got there first
            return SessionResolution(session_id=active.id, action=SessionAction.NONE)
        return SessionResolution(
            session_id=active.id,
            action=SessionAction.ENDED,
            reopen_count=active.reopen_count,
            duration_seconds=duration,
        )

    def _end_if_idle(self, db: Session, user_id: str, device_id: str, now: datetime) -> None:
        """End an active session that went quiet (backgrounded, then timed out)."""
        if not self.idle_timeout_minutes:
            return
        active = self.find_active(db, user_id, device_id)
        if active is None:
            return
        last_event_at = db.execute(
            select(func.max(BehavioralEvent.timestamp)).where(
                BehavioralEvent.session_id == active.id
            )
        ).scalar()
        last_activity = max(filter(None, (last_event_at, active.updated_at, active.started_at)))
        if now - last_activity >= timedelta(minutes=self.idle_timeout_minutes):
            logger.info(
                "Ending idle session before reopen",
                extra={"session_id": active.id, "user_id": user_id},
            )
            self._end(db, active, last_activity)
