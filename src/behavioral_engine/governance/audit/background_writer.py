"""Background Execution Log Writer - keeps stage logging off the hot path."""

import atexit, logging, queue, threading
from typing import Optional

from behavioral_engine.common.constants import ExecutionLogConstants
from behavioral_engine.governance.audit.store import ExecutionLogStore
from behavioral_engine.governance.schemas import ExecutionLogEntry

logger = logging.getLogger(__name__)


class BackgroundExecutionLogWriter(ExecutionLogStore):
    """Queues entries and writes them to a backing store on a daemon thread.

    When the queue is full the entry is written synchronously
    (``sync_fallback``) or dropped and counted.
    """

    DEFAULT_QUEUE_SIZE = ExecutionLogConstants.QUEUE_SIZE
    DEFAULT_FLUSH_TIMEOUT = ExecutionLogConstants.FLUSH_TIMEOUT_SECONDS

    def __init__(
        self,
        store: ExecutionLogStore,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT,
        sync_fallback: bool = True,
    ):
        self.store = store
        self.max_queue_size = max_queue_size
        self.flush_timeout = flush_timeout
        self.sync_fallback = sync_fallback

        self._queue: queue.Queue[Optional[ExecutionLogEntry]] = queue.Queue(
            maxsize=max_queue_size
        )
        self._shutdown_event = threading.Event()
        self._writer_thread: Optional[threading.Thread] = None

        self._entries_written = 0
        self._entries_failed = 0
        self._entries_dropped = 0
        self._sync_fallback_count = 0
        self._stats_lock = threading.Lock()

        self._start_writer()
        atexit.register(self.shutdown)

    def _start_writer(self) -> None:
        self._writer_thread = threading.Thread(
            target=self._writer_loop,
            name="ExecutionLogWriter",
            daemon=True,
        )
        self._writer_thread.start()
        logger.info("Background execution log writer started")

    def _write(self, entry: ExecutionLogEntry) -> None:
        try:
            self.store.append_entry(entry)
            with self._stats_lock:
                self._entries_written += 1
        except Exception as e:
            with self._stats_lock:
                self._entries_failed += 1
            logger.error(
                f"Failed to write execution log entry: {e}",
                extra={"entry_id": entry.entry_id, "agent_type": entry.agent_type.value},
            )

    def _writer_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                entry = self._queue.get(timeout=ExecutionLogConstants.QUEUE_GET_TIMEOUT)
            except queue.Empty:
                continue

            try:
                if entry is None:
                    break
                self._write(entry)
            finally:
                self._queue.task_done()

        self._drain_queue()
        logger.info("Background execution log writer stopped")

    def _drain_queue(self) -> None:
        drained = 0
        while True:
            try:
                entry = self._queue.get_nowait()
            except queue.Empty:
                break
            if entry is not None:
                self._write(entry)
                drained += 1
            self._queue.task_done()

        if drained > 0:
            logger.info(f"Drained {drained} execution log entries during shutdown")

    def append_entry(self, entry: ExecutionLogEntry) -> ExecutionLogEntry:
        """Queue an entry. Falls back to a synchronous write after shutdown."""
        if self._shutdown_event.is_set():
            return self.store.append_entry(entry)

        try:
            self._queue.put_nowait(entry)
            return entry
        except queue.Full:
            if self.sync_fallback:
                with self._stats_lock:
                    self._sync_fallback_count += 1
                logger.warning("Execution log queue full, writing synchronously")
                return self.store.append_entry(entry)
            with self._stats_lock:
                self._entries_dropped += 1
            logger.error("Execution log queue full, entry dropped")
            return entry

    def get_entries(self, agent_type=None, user_id=None, success=None):
        return self.store.get_entries(agent_type=agent_type, user_id=user_id, success=success)

    def flush(self) -> None:
        """Block until every queued entry has been handled."""
        self._queue.join()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the writer, draining what is queued."""
        if self._shutdown_event.is_set():
            return

        timeout = timeout if timeout is not None else self.flush_timeout
        logger.info("Shutting down background execution log writer...")
        self._shutdown_event.set()

        try:
            self._queue.put_nowait(None)
        except queue.Full:
            pass  # writer sees the shutdown event instead

        if self._writer_thread and self._writer_thread.is_alive():
            self._writer_thread.join(timeout=timeout)
            if self._writer_thread.is_alive():
                logger.warning("Execution log writer did not stop cleanly")

        stats = self.get_stats()
        logger.info(
            f"Execution log writer shutdown complete. "
            f"Written: {stats['entries_written']}, "
            f"Failed: {stats['entries_failed']}, "
            f"Dropped: {stats['entries_dropped']}, "
            f"Sync fallbacks: {stats['sync_fallback_count']}"
        )

    def get_stats(self) -> dict:
        with self._stats_lock:
            return {
                "entries_written": self._entries_written,
                "entries_failed": self._entries_failed,
                "entries_dropped": self._entries_dropped,
                "sync_fallback_count": self._sync_fallback_count,
                "queue_size": self._queue.qsize(),
                "max_queue_size": self.max_queue_size,
            }

    @property
    def is_running(self) -> bool:
        return not self._shutdown_event.is_set()
