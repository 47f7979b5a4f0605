"""Feedback Recorder and Response Handler."""

from behavioral_engine.agents.feedback.agent import FeedbackAgent
from behavioral_engine.agents.feedback.response import ACTION_OUTCOMES, ResponseHandler
from behavioral_engine.agents.feedback.schema import (
    FeedbackInsight,
    FeedbackRequest,
    FeedbackResult,
    RespondRequest,
    RespondResult,
    ResponseEvent,
)

__all__ = [
    "FeedbackAgent",
    "ResponseHandler",
    "ACTION_OUTCOMES",
    "FeedbackInsight",
    "FeedbackRequest",
    "FeedbackResult",
    "RespondRequest",
    "RespondResult",
    "ResponseEvent",
]
