"""
Background execution of queued imports.

The upload endpoint creates the ``queued`` import record and hands the rest
of the pipeline to an ``ImportTaskQueue``. The queue owns a bounded thread
pool, keeps track of in-flight futures and logs anything that escapes a job,
so no import runs detached from an owner.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Dict, Optional

from qbank.core.config import settings

from .models import ImportResult
from .orchestrator import ImportProgressCallback, execute_import

logger = logging.getLogger(__name__)


class ImportTaskQueue:
    """Bounded work queue running ``execute_import`` jobs."""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max(1, max_workers or settings.import_queue_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="qbank-import")
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        import_id: str,
        file_content: bytes,
        filename: str,
        user_id: str,
        on_progress: Optional[ImportProgressCallback] = None,
    ) -> Future:
        """Schedule the pipeline for an already created ``queued`` import."""
        future = self._executor.submit(
            execute_import,
            file_content,
            filename,
            user_id,
            on_progress,
            import_id,
        )
        with self._lock:
            self._futures[import_id] = future
        future.add_done_callback(lambda done: self._finished(import_id, done))
        logger.info("Queued import %s ('%s')", import_id, filename)
        return future

    def _finished(self, import_id: str, future: Future) -> None:
        with self._lock:
            self._futures.pop(import_id, None)
        if future.cancelled():
            logger.warning("Import %s was cancelled before it started", import_id)
            return
        error = future.exception()
        if error is not None:
            logger.error("Import %s crashed outside the pipeline: %s", import_id, error)
            return
        result: ImportResult = future.result()
        logger.info("Import %s finished with status %s", import_id, result.status.value)

    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for every in-flight import; returns False when the timeout expired first."""
        with self._lock:
            futures = list(self._futures.values())
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_jobs)
