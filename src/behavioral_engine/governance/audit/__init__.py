"""Execution log: stores, logger and background writer."""

from behavioral_engine.governance.audit.store import (
    ExecutionLogStore,
    DatabaseExecutionLogStore,
    FileExecutionLogStore,
)
from behavioral_engine.governance.audit.logger import ExecutionLogger, StageRecord
from behavioral_engine.governance.audit.background_writer import BackgroundExecutionLogWriter

__all__ = [
    "ExecutionLogStore",
    "DatabaseExecutionLogStore",
    "FileExecutionLogStore",
    "ExecutionLogger",
    "StageRecord",
    "BackgroundExecutionLogWriter",
]
