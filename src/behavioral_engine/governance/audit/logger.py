"""Execution Logger - one structured record per pipeline stage run.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from behavioral_engine.governance.audit.store import ExecutionLogStore
from behavioral_engine.governance.schemas import AgentType, ExecutionLogEntry

logger = logging.getLogger(__name__)


@dataclass
class StageRecord:
    """Mutable holder a stage fills in while it runs."""
    output: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


class ExecutionLogger:
    """Records stage runs. Write failures are logged, never raised."""

    def __init__(self, store: ExecutionLogStore):
        self.store = store

    def log_stage(
        self,
        agent_type: AgentType,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        input_data: Optional[Dict[str, Any]] = None,
        output_data: Optional[Dict[str, Any]] = None,
        execution_time_ms: float = 0.0,
        success: bool = True,
        error_message: Optional[str] = None,
    ) -> Optional[ExecutionLogEntry]:
        """Write one execution record.

        Returns:
            The entry, or None if it could not be built or stored.
        """
        try:
            entry = ExecutionLogEntry(
                agent_type=agent_type,
                user_id=user_id,
                session_id=session_id,
                input_data=input_data or {},
                output_data=output_data or {},
                execution_time_ms=max(0.0, execution_time_ms),
                success=success,
                error_message=error_message,
            )
            return self.store.append_entry(entry)
        except Exception as e:
            logger.error(
                f"Failed to write execution log entry: {e}",
                extra={"agent_type": str(agent_type), "user_id": user_id},
            )
            return None

    @contextmanager
    def track(
        self,
        agent_type: AgentType,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        input_data: Optional[Dict[str, Any]] = None,
    ) -> Iterator[StageRecord]:
        """Time a stage and log it whether it succeeds or raises.

        The exception is re-raised after logging.
        """
        record = StageRecord(session_id=session_id)
        try:
            yield record
        except Exception as e:
            self.log_stage(
                agent_type=agent_type,
                user_id=user_id,
                session_id=record.session_id,
                input_data=input_data,
                execution_time_ms=record.elapsed_ms,
                success=False,
                error_message=f"{type(e).__name__}: {e}",
            )
            raise
        else:
            self.log_stage(
                agent_type=agent_type,
                user_id=user_id,
                session_id=record.session_id,
                input_data=input_data,
                output_data=record.output,
                execution_time_ms=record.elapsed_ms,
                success=True,
            )

    def shutdown(self) -> None:
        """Flush and stop a background store, if one is in use."""
        shutdown = getattr(self.store, "shutdown", None)
        if callable(shutdown):
            shutdown()
