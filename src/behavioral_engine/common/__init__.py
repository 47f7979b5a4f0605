"""Common utilities - logging, config, exceptions."""

from behavioral_engine.common.logging.logger import get_logger
from behavioral_engine.common.config import Config, get_config, reset_config
from behavioral_engine.common.exceptions import (
    BehavioralEngineError,
    ConfigurationError,
    AuthenticationError,
    ValidationError,
    InvalidTransitionError,
    NotFoundError,
    DependencyFailure,
    TemplateConfigurationError,
)

__all__ = [
    # Logging
    "get_logger",
    # Config
    "Config",
    "get_config",
    "reset_config",
    # Exceptions
    "BehavioralEngineError",
    "ConfigurationError",
    "AuthenticationError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "DependencyFailure",
    "TemplateConfigurationError",
]
