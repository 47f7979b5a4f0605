"""Behavioral event and session schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Event types a device may report."""
    APP_OPEN = "app_open"
    APP_CLOSE = "app_close"
    SCREEN_VIEW = "screen_view"
    SCROLL = "scroll"
    TAP = "tap"
    REOPEN = "reopen"
    BACKGROUND = "background"
    FOREGROUND = "foreground"
    SESSION_START = "session_start"
    SESSION_END = "session_end"


# Cold/warm start events open or reopen a session
SESSION_OPEN_EVENTS = frozenset({EventType.APP_OPEN, EventType.SESSION_START})
SESSION_CLOSE_EVENTS = frozenset({EventType.APP_CLOSE, EventType.SESSION_END})

# Counted by the reopen-frequency factor
REOPEN_COUNTED_EVENTS = frozenset({EventType.REOPEN.value, EventType.APP_OPEN.value})


class SessionState(str, Enum):
    """Session lifecycle states."""
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class BehavioralEventRecord(BaseModel):
    """Immutable behavioral fact as stored."""
    id: str
    user_id: str
    device_id: Optional[str] = None
    session_id: Optional[str] = None
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    screen_name: Optional[str] = None
    timestamp: datetime
    processed: bool = False

    model_config = {"from_attributes": True}


class SessionRecord(BaseModel):
    """Session as stored."""
    id: str
    user_id: str
    device_id: str
    state: SessionState
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    reopen_count: int = 0

    model_config = {"from_attributes": True}
