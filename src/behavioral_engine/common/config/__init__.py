"""Configuration package."""

from behavioral_engine.common.config.settings import (
    Config,
    Environment,
    ExecutionLogStorage,
    LogLevel,
    get_config,
    reset_config,
)

__all__ = [
    "Config",
    "Environment",
    "ExecutionLogStorage",
    "LogLevel",
    "get_config",
    "reset_config",
]
