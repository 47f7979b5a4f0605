"""API Gateway package."""

from behavioral_engine.api.service import BehavioralEngineService

__all__ = ["BehavioralEngineService"]
