"""Device/Session Registry."""

from behavioral_engine.registry.sessions import (
    SessionAction,
    SessionRegistry,
    SessionResolution,
)

__all__ = ["SessionAction", "SessionRegistry", "SessionResolution"]
