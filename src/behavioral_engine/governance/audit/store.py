"""Execution Log Store - Abstraction for execution log persistence.

This module provides an interface for execution log storage backends,
decoupling stage logging from specific persistence mechanisms.

Backends:
- DatabaseExecutionLogStore: the agent_logs table
- FileExecutionLogStore: append-only JSONL with daily rotation
"""

import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import select

from behavioral_engine.common.time import utc_now
from behavioral_engine.data.db import Database
from behavioral_engine.data.models import AgentLog
from behavioral_engine.governance.schemas import AgentType, ExecutionLogEntry


class ExecutionLogStore(ABC):
    """Abstract base class for execution log storage backends.

    Implementations must be thread-safe and append-only.
    """

    @abstractmethod
    def append_entry(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        """Append an entry to the store.

        Raises:
            IOError: If write fails
        """
        pass

    @abstractmethod
    def get_entries(
        self,
        agent_type: Optional[AgentType] = None,
        user_id: Optional[str] = None,
        success: Optional[bool] = None,
    ) -> Generator[ExecutionLogEntry, None, None]:
        """Retrieve entries with optional filtering, oldest first."""
        pass


class DatabaseExecutionLogStore(ExecutionLogStore):
    """Stores entries in the agent_logs table.

    Each append runs in its own transaction, so a failing pipeline
    transaction never takes its execution record down with it.
    """

    def __init__(self, database: Database):
        self.database = database

    def append_entry(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        data = entry.model_dump(mode="json")
        with self.database.session_scope() as db:
            db.add(AgentLog(
                id=entry.entry_id,
                agent_type=entry.agent_type.value,
                user_id=entry.user_id,
                session_id=entry.session_id,
                input_data=data["input_data"],
                output_data=data["output_data"],
                execution_time_ms=entry.execution_time_ms,
                success=entry.success,
                error_message=entry.error_message,
                created_at=entry.timestamp,
            ))
        return entry

    def get_entries(
        self,
        agent_type: Optional[AgentType] = None,
        user_id: Optional[str] = None,
        success: Optional[bool] = None,
    ) -> Generator[ExecutionLogEntry, None, None]:
        stmt = select(AgentLog).order_by(AgentLog.created_at)
        if agent_type is not None:
            stmt = stmt.where(AgentLog.agent_type == AgentType(agent_type).value)
        if user_id is not None:
            stmt = stmt.where(AgentLog.user_id == user_id)
        if success is not None:
            stmt = stmt.where(AgentLog.success == success)

        with self.database.session_scope() as db:
            rows = db.execute(stmt).scalars().all()

        for row in rows:
            yield ExecutionLogEntry(
                entry_id=row.id,
                timestamp=row.created_at,
                agent_type=row.agent_type,
                user_id=row.user_id,
                session_id=row.session_id,
                input_data=row.input_data or {},
                output_data=row.output_data or {},
                execution_time_ms=row.execution_time_ms,
                success=row.success,
                error_message=row.error_message,
            )


class FileExecutionLogStore(ExecutionLogStore):
    """File-based store in JSONL format with daily rotation."""

    DEFAULT_LOG_DIR = Path(__file__).parent.parent.parent.parent.parent / "logs" / "execution"

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_filename_pattern: str = "execution_{date}.jsonl",
    ):
        """Initialize file store.

        Args:
            log_dir: Directory for logs. Uses default if not provided.
            log_filename_pattern: Pattern for log filename. {date} is replaced.
        """
        self.log_dir = Path(log_dir) if log_dir else self.DEFAULT_LOG_DIR
        self.log_filename_pattern = log_filename_pattern
        self._lock = threading.Lock()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _get_log_path(self, date: Optional[str] = None) -> Path:
        date = date or utc_now().strftime("%Y-%m-%d")
        return self.log_dir / self.log_filename_pattern.replace("{date}", date)

    def append_entry(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        line = json.dumps(entry.model_dump(mode="json"), sort_keys=True, default=str)
        with self._lock:
            with open(self._get_log_path(), "a", encoding="utf-8") as f:
                f.write(line + "\n")
        return entry

    def get_entries(
        self,
        agent_type: Optional[AgentType] = None,
        user_id: Optional[str] = None,
        success: Optional[bool] = None,
        date: Optional[str] = None,
    ) -> Generator[ExecutionLogEntry, None, None]:
        log_path = self._get_log_path(date)
        if not log_path.exists():
            return

        with open(log_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = ExecutionLogEntry.model_validate(json.loads(line))
                if agent_type is not None and entry.agent_type != AgentType(agent_type):
                    continue
                if user_id is not None and entry.user_id != user_id:
                    continue
                if success is not None and entry.success != success:
                    continue
                yield entry
