"""Orchestration Dispatcher - fire-and-forget handoff from the gateway.

The gateway submits and returns immediately. Each run executes in a
worker of a shared thread pool and is wrapped in its own error boundary:
a failing run is logged and recorded, never propagated.
"""

import atexit
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from behavioral_engine.governance.audit import ExecutionLogger
from behavioral_engine.governance.schemas import AgentType
from behavioral_engine.orchestration.context import OrchestrationRequest, OrchestrationResult
from behavioral_engine.orchestration.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


# Module-level shared executor
_shared_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_shared_executor(max_workers: int = 4) -> ThreadPoolExecutor:
    """Get or create the shared orchestration pool."""
    global _shared_executor

    with _executor_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="OrchestratorWorker"
            )
            atexit.register(_shutdown_shared_executor)
            logger.info(f"Created shared orchestration executor with {max_workers} workers")

    return _shared_executor


def _shutdown_shared_executor() -> None:
    """Shutdown the shared executor on process exit."""
    global _shared_executor
    with _executor_lock:
        if _shared_executor is not None:
            _shared_executor.shutdown(wait=True, cancel_futures=False)
            logger.info("Shared orchestration executor shutdown complete")
            _shared_executor = None


class OrchestrationDispatcher:
    """Submits orchestrator runs without waiting on them."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        execution_logger: Optional[ExecutionLogger] = None,
        max_workers: int = 4,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        """Initialize dispatcher.

        Args:
            orchestrator: Runs the pipeline
            execution_logger: Records runs that die outside the orchestrator's
                own stage handling. Defaults to the orchestrator's.
            max_workers: Pool size when using the shared executor
            executor: Custom executor. Uses the shared one if not provided.
        """
        self.orchestrator = orchestrator
        self.execution_logger = execution_logger or orchestrator.execution_logger
        self.max_workers = max_workers
        self._executor = executor

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is not None:
            return self._executor
        return _get_shared_executor(self.max_workers)

    def dispatch(self, request: OrchestrationRequest) -> Optional[Future]:
        """Hand ``request`` to a worker. Never raises.

        Returns:
            The future, or None if it could not be scheduled.
        """
        try:
            return self._get_executor().submit(self._run_safely, request)
        except Exception as e:
            logger.error(
                f"Failed to dispatch orchestration: {type(e).__name__}: {e}",
                extra={"user_id": request.user_id, "run_id": request.run_id},
            )
            return None

    def run_sync(self, request: OrchestrationRequest) -> OrchestrationResult:
        """Run in the caller's thread (debug/admin path)."""
        return self.orchestrator.run(request)

    def _run_safely(self, request: OrchestrationRequest) -> Optional[OrchestrationResult]:
        try:
            return self.orchestrator.run(request)
        except Exception as e:
            logger.error(
                f"Orchestration run failed: {type(e).__name__}: {e}",
                extra={"user_id": request.user_id, "run_id": request.run_id},
                exc_info=True,
            )
            self.execution_logger.log_stage(
                agent_type=AgentType.ORCHESTRATOR,
                user_id=request.user_id,
                session_id=request.session_id,
                input_data=request.log_input(),
                success=False,
                error_message=f"{type(e).__name__}: {e}",
            )
            return None

    def shutdown(self, wait: bool = True) -> None:
        """Stop a custom executor. The shared one stops at exit."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
