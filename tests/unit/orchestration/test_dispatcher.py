"""Tests for the Orchestration Dispatcher."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from behavioral_engine.governance.schemas import AgentType
from behavioral_engine.orchestration import OrchestrationDispatcher, OrchestrationRequest


def make_request():
    return OrchestrationRequest.create("user-1", "scroll", session_id="sess-1")


class TestDispatch:
    """Fire-and-forget submission."""

    def test_runs_on_executor(self, inline_executor):
        orchestrator = MagicMock()
        dispatcher = OrchestrationDispatcher(orchestrator, executor=inline_executor)
        request = make_request()

        future = dispatcher.dispatch(request)

        assert inline_executor.submitted == 1
        orchestrator.run.assert_called_once_with(request)
        assert future.result() is orchestrator.run.return_value

    def test_failed_run_is_logged_not_raised(self, inline_executor):
        """An escaped error becomes a failed orchestrator record."""
        orchestrator = MagicMock()
        orchestrator.run.side_effect = RuntimeError("pool exhausted")
        execution_logger = MagicMock()
        dispatcher = OrchestrationDispatcher(
            orchestrator, execution_logger=execution_logger, executor=inline_executor
        )

        future = dispatcher.dispatch(make_request())

        assert future.result() is None
        execution_logger.log_stage.assert_called_once()
        kwargs = execution_logger.log_stage.call_args.kwargs
        assert kwargs["agent_type"] == AgentType.ORCHESTRATOR
        assert kwargs["success"] is False
        assert kwargs["session_id"] == "sess-1"
        assert kwargs["error_message"] == "RuntimeError: pool exhausted"

    def test_submit_failure_returns_none(self):
        """A stopped executor never surfaces to the caller."""
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        dispatcher = OrchestrationDispatcher(MagicMock(), executor=executor)

        assert dispatcher.dispatch(make_request()) is None

    def test_defaults_to_orchestrators_logger(self):
        orchestrator = MagicMock()
        dispatcher = OrchestrationDispatcher(orchestrator)
        assert dispatcher.execution_logger is orchestrator.execution_logger

    def test_run_sync_propagates(self):
        """The synchronous path returns the result directly."""
        orchestrator = MagicMock()
        dispatcher = OrchestrationDispatcher(orchestrator)

        assert dispatcher.run_sync(make_request()) is orchestrator.run.return_value

    def test_runs_on_worker_thread(self):
        orchestrator = MagicMock()
        executor = ThreadPoolExecutor(max_workers=2)
        dispatcher = OrchestrationDispatcher(orchestrator, executor=executor)
        try:
            futures = [dispatcher.dispatch(make_request()) for _ in range(4)]
            for future in futures:
                future.result(timeout=5)
        finally:
            dispatcher.shutdown()

        assert orchestrator.run.call_count == 4
