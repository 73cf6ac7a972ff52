"""
File lifecycle manager.

Drives one drop file through

    discovered -> lock_waiting -> processing -> archived | quarantined

Archived files move to <machine>/Backup, quarantined files to
<machine>/Error, both renamed with a timestamp prefix. A source file is
never deleted. A stop request while waiting leaves the file where it is.
"""
import os
import shutil
import sys
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from forcam_ingest.core.config import FileSettings, LoadSettings
from forcam_ingest.core.errors import LockTimeoutError, OperationCancelled, TransientStoreError
from forcam_ingest.core.models import BatchStatus, FileState, FileTask, ImportBatch
from forcam_ingest.observability import metrics
from forcam_ingest.observability.logger import get_logger
from forcam_ingest.pipeline.batch_loader import BatchLoader, BatchSource
from forcam_ingest.pipeline.retry import RetryExecutor
from forcam_ingest.pipeline.run_context import RunContext
from forcam_ingest.sources.readers import DropFileReader, import_type_for

if sys.platform != "win32":
    import fcntl
else:  # the open itself fails on a file another process holds exclusively
    fcntl = None

logger = get_logger(__name__)

LockProbe = Callable[[Path], bool]

REASON_LOCKED = "locked"
REASON_UNSUPPORTED = "unsupported_type"
REASON_LOAD_FAILED = "load_failed"
REASON_BUDGET = "error_budget_exceeded"
REASON_MISSING = "missing"
REASON_CANCELLED = "cancelled"
REASON_MOVE_FAILED = "move_failed"


def probe_exclusive(path: Path) -> bool:
    """True when the file can be opened for reading and exclusively locked right now."""
    try:
        with open(path, "rb") as f:
            if fcntl is not None:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        return True
    except OSError:
        return False


def timestamped_name(name: str, now: datetime) -> str:
    return f"{now:%Y%m%dT%H%M%S%f}_{name}"


def unique_destination(directory: Path, name: str) -> Path:
    """directory/name, or directory/stem_<n>.ext if that already exists."""
    candidate = directory / name
    stem, suffix = os.path.splitext(name)
    n = 1
    while candidate.exists():
        candidate = directory / f"{stem}_{n}{suffix}"
        n += 1
    return candidate


class FileLifecycleManager:
    """
    Processes FileTasks one at a time; the scheduler runs one call per worker.

    Args:
        reader: Drop-file reader
        loader: Batch loader
        retry: Retry executor sharing the run's stop event
        file_settings: File section of the run settings
        load_settings: Load section of the run settings
        context: Run counters
        store: Error sink (log_error); defaults to the loader's store
        lock_probe: Replaceable exclusive-open check
        clock: Returns "now" for destination names
    """

    def __init__(
        self,
        reader: DropFileReader,
        loader: BatchLoader,
        retry: RetryExecutor,
        file_settings: FileSettings,
        load_settings: LoadSettings,
        context: RunContext,
        store=None,
        lock_probe: LockProbe = probe_exclusive,
        clock: Callable[[], datetime] | None = None,
    ):
        self.reader = reader
        self.loader = loader
        self.retry = retry
        self.file_settings = file_settings
        self.load_settings = load_settings
        self.context = context
        self.store = store if store is not None else loader.store
        self.lock_probe = lock_probe
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # state handling
    # ------------------------------------------------------------------

    def _transition(self, task: FileTask, new_state: FileState, reason: str | None = None) -> None:
        previous = task.transition(new_state)
        if reason:
            task.reason = reason
        logger.info(
            "file_state_transition",
            extra={
                "event": "file_state_transition",
                "path": str(task.path),
                "machine_name": task.machine_name,
                "from_state": previous.value,
                "to_state": new_state.value,
                "reason": reason,
                "attempts": task.attempts,
            },
        )

    def _cancel(self, task: FileTask) -> FileTask:
        task.cancelled = True
        task.reason = task.reason or REASON_CANCELLED
        self.context.incr("files_cancelled")
        metrics.files_processed_total.labels(machine=task.machine_name, outcome="cancelled").inc()
        logger.info(
            "File left in place: run stopping",
            extra={"path": str(task.path), "machine_name": task.machine_name, "state": task.state.value},
        )
        return task

    def _wait_for_unlock(self, task: FileTask) -> bool:
        """
        Probe exclusive access up to file_unlock_retries times.

        Raises:
            OperationCancelled: If the run stops while waiting
        """
        retries = self.file_settings.file_unlock_retries
        wait_seconds = self.file_settings.file_unlock_wait_seconds
        stop_event = self.context.stop_event

        for attempt in range(1, retries + 1):
            if stop_event.is_set():
                raise OperationCancelled(f"Lock wait cancelled: {task.path}")
            if self.lock_probe(task.path):
                return True
            logger.debug(
                "File locked, waiting",
                extra={"path": str(task.path), "attempt": attempt, "max_attempts": retries},
            )
            if attempt < retries and stop_event.wait(wait_seconds):
                raise OperationCancelled(f"Lock wait cancelled: {task.path}")
        return False

    # ------------------------------------------------------------------
    # load and move
    # ------------------------------------------------------------------

    def _load(self, task: FileTask) -> ImportBatch:
        task.attempts += 1
        import_type, rows = self.reader.read(task.path)
        source = BatchSource(
            import_type=import_type,
            descriptor=str(task.path),
            machine_name=task.machine_name,
            rows=rows,
        )
        batch = self.loader.run_batch(source)
        task.batch_id = str(batch.batch_id)
        return batch

    def _move(self, task: FileTask, dir_name: str) -> bool:
        """
        Move the file under <machine>/<dir_name>.

        The first attempt runs even when the run is stopping; a stop only
        prevents further attempts. Failures are counted, never raised.

        Returns:
            True when the file reached its destination
        """
        target_dir = task.path.parent / dir_name

        def move() -> Path:
            target_dir.mkdir(parents=True, exist_ok=True)
            destination = unique_destination(target_dir, timestamped_name(task.path.name, self.clock()))
            shutil.move(str(task.path), str(destination))
            return destination

        try:
            outcome = self.retry.execute(
                move,
                self.load_settings.move_max_attempts,
                self.load_settings.move_base_delay_seconds,
                retry_on=(OSError,),
                operation_name="file_move",
            )
        except OperationCancelled as e:
            error = str(e)
        else:
            if outcome.ok:
                task.destination = outcome.value
                logger.info(
                    "File moved",
                    extra={"path": str(task.path), "destination": str(task.destination),
                           "machine_name": task.machine_name},
                )
                return True
            error = str(outcome.error)

        task.move_failed = True
        task.last_error = error
        self.context.incr("files_move_failed")
        metrics.file_moves_failed_total.labels(machine=task.machine_name).inc()
        metrics.record_error("MoveFailed", "file_lifecycle")
        logger.error(
            "File move failed",
            extra={"path": str(task.path), "target_dir": str(target_dir), "error": error,
                   "state": task.state.value},
        )
        return False

    def _archive(self, task: FileTask) -> None:
        # Archived only once the file is actually in Backup
        if not self._move(task, self.file_settings.backup_dir_name):
            task.reason = REASON_MOVE_FAILED
            self.context.record_source(task.machine_name, succeeded=False)
            return
        self._transition(task, FileState.ARCHIVED)
        self.context.incr("files_archived")
        self.context.record_source(task.machine_name, succeeded=True)
        metrics.files_processed_total.labels(machine=task.machine_name, outcome="archived").inc()

    def _quarantine(self, task: FileTask, reason: str, error: str | None) -> None:
        task.reason = reason
        task.last_error = error
        if self._move(task, self.file_settings.error_dir_name):
            self._transition(task, FileState.QUARANTINED, reason)
            self.context.incr("files_quarantined")
            metrics.files_processed_total.labels(machine=task.machine_name, outcome="quarantined").inc()
        self.context.record_source(task.machine_name, succeeded=False)
        self.store.log_error(
            f"File quarantined ({reason}): {error}",
            16,
            {
                "machine_name": task.machine_name,
                "file_path": str(task.path),
                "batch_id": task.batch_id,
                "reason": reason,
                "destination": str(task.destination) if task.destination else None,
            },
        )

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------

    def process(self, task: FileTask) -> FileTask:
        """
        Run one task to a terminal state, or leave it in place on stop.

        Never raises for file or load problems; the outcome is on the task.
        """
        metrics.workers_in_flight.inc()
        try:
            return self._process(task)
        finally:
            metrics.workers_in_flight.dec()

    def _process(self, task: FileTask) -> FileTask:
        if not task.path.exists():
            task.reason = REASON_MISSING
            logger.warning("File vanished before processing", extra={"path": str(task.path)})
            return self._cancel(task)

        self._transition(task, FileState.LOCK_WAITING)
        try:
            unlocked = self._wait_for_unlock(task)
        except OperationCancelled:
            return self._cancel(task)

        if not unlocked:
            error = LockTimeoutError(
                str(task.path),
                self.file_settings.file_unlock_retries,
                self.file_settings.file_unlock_wait_seconds,
            )
            self._quarantine(task, REASON_LOCKED, str(error))
            return task

        if import_type_for(task.path) is None:
            self._quarantine(task, REASON_UNSUPPORTED, f"Unsupported file type: {task.path.suffix}")
            return task

        self._transition(task, FileState.PROCESSING)
        try:
            outcome = self.retry.execute(
                lambda: self._load(task),
                self.load_settings.load_max_attempts,
                self.load_settings.load_base_delay_seconds,
                retry_on=(TransientStoreError, OSError),
                operation_name="file_load",
            )
        except OperationCancelled:
            return self._cancel(task)

        if not outcome.ok:
            self._quarantine(task, REASON_LOAD_FAILED, str(outcome.error))
            return task

        batch = outcome.value
        if batch.status is BatchStatus.FAILED:
            # Budget exhaustion is deterministic; retrying cannot change it
            self._quarantine(task, REASON_BUDGET, batch.error)
            return task

        self._archive(task)
        return task
