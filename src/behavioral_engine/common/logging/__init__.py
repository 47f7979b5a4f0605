"""Logging helpers."""

from behavioral_engine.common.logging.logger import get_logger

__all__ = ["get_logger"]
