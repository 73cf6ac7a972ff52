"""
Concurrency scheduler.

File tasks run on a bounded ThreadPoolExecutor (W workers). The API loop runs
on its own thread so it never takes a file worker. A path is accepted once
while it is in flight, so the scan and the watch trigger can both submit it.
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path

from forcam_ingest.core.models import FileTask, RunSummary
from forcam_ingest.observability import metrics
from forcam_ingest.observability.logger import get_logger, log_operation
from forcam_ingest.pipeline.run_context import RunContext

logger = get_logger(__name__)


class IngestionScheduler:
    """
    Owns the file worker pool and the API thread for one run.

    Args:
        lifecycle: Object with process(FileTask) -> FileTask
        context: Run counters and stop signal
        scanner: FileScanner for scan_and_schedule (optional)
        api_ingestor: ApiIngestor for the API thread (optional)
        max_workers: File pool size W
    """

    def __init__(
        self,
        lifecycle,
        context: RunContext,
        scanner=None,
        api_ingestor=None,
        max_workers: int = 4,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.lifecycle = lifecycle
        self.context = context
        self.scanner = scanner
        self.api_ingestor = api_ingestor
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="file-worker")
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}
        self._api_thread: threading.Thread | None = None
        self._closed = False
        self.completed: list[FileTask] = []

    @staticmethod
    def _path_key(path: Path) -> str:
        return str(Path(path).resolve())

    def submit(self, task: FileTask) -> Future | None:
        """
        Queue a task on the file pool.

        Returns:
            The task's future, or None if the run is stopping or the path is
            already in flight
        """
        if self.context.stopping:
            logger.debug("Submit refused: run stopping", extra={"path": str(task.path)})
            return None

        key = self._path_key(task.path)
        with self._lock:
            if self._closed:
                return None
            if key in self._in_flight:
                logger.debug("Submit ignored: already in flight", extra={"path": str(task.path)})
                return None
            future = self._executor.submit(self._run_task, task)
            self._in_flight[key] = future

        self.context.incr("files_discovered")
        future.add_done_callback(lambda f: self._task_done(key, task, f))
        return future

    def _run_task(self, task: FileTask) -> FileTask:
        try:
            return self.lifecycle.process(task)
        except Exception as e:
            # Keep the worker alive; the file stays in place for the next run
            logger.exception(
                "File task crashed",
                extra={"path": str(task.path), "error": str(e)},
            )
            metrics.record_error(type(e).__name__, "scheduler")
            task.last_error = str(e)
            return task

    def _task_done(self, key: str, task: FileTask, future: Future) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            if future.cancelled():
                task.cancelled = True
            self.completed.append(task)
        if future.cancelled():
            self.context.incr("files_cancelled")

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def scan_and_schedule(self) -> int:
        """Scan every machine directory and submit each candidate. Returns the number accepted."""
        if self.scanner is None:
            return 0
        accepted = 0
        for task in self.scanner.scan():
            if self.submit(task) is not None:
                accepted += 1
        return accepted

    def wait_for_files(self) -> None:
        """Block until every submitted file task is terminal, cancelled or left in place."""
        while True:
            with self._lock:
                pending = list(self._in_flight.values())
            if not pending:
                return
            wait(pending)

    def _api_main(self) -> None:
        try:
            self.api_ingestor.run()
        except Exception as e:
            logger.exception("API ingestion crashed", extra={"error": str(e)})
            metrics.record_error(type(e).__name__, "api_ingest")

    def start_api(self) -> threading.Thread | None:
        """Start the API loop on its own thread."""
        if self.api_ingestor is None or self._api_thread is not None:
            return self._api_thread
        self._api_thread = threading.Thread(target=self._api_main, name="api-ingest", daemon=True)
        self._api_thread.start()
        return self._api_thread

    def shutdown(self) -> None:
        """Refuse new work, drop queued tasks and wait for running ones."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
        if self._api_thread is not None:
            self._api_thread.join()

    def run(self, scan: bool = True, api: bool = True, watch_trigger=None) -> RunSummary:
        """
        One full run.

        Starts the API thread, scans and schedules drop files, optionally
        keeps a watch trigger running until stop is requested, then waits
        for all work and returns the run summary.
        """
        with log_operation("Ingestion run", logger=logger, workers=self.max_workers):
            if api:
                self.start_api()
            if scan:
                self.scan_and_schedule()

            if watch_trigger is not None:
                watch_trigger.start()
                try:
                    self.context.stop_event.wait()
                finally:
                    watch_trigger.stop()

            self.wait_for_files()
            if self._api_thread is not None:
                self._api_thread.join()
            self.shutdown()

        summary = self.context.snapshot()
        logger.info("Run summary", extra={"event": "run_summary", **summary.model_dump(mode="json")})
        return summary
