"""
Watch trigger.

Subscribes to filesystem events under the drop-file root with watchdog and
feeds settled files into the same scheduler the startup scan uses.
"""
import threading
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from forcam_ingest.core.config import FileSettings
from forcam_ingest.observability.logger import get_logger
from forcam_ingest.sources.file_scanner import FileScanner

logger = get_logger(__name__)

RESCAN_KEY = "<rescan>"


class _DropFileEventHandler(FileSystemEventHandler):
    def __init__(self, trigger: "WatchTrigger") -> None:
        self._trigger = trigger

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._trigger.notify(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._trigger.notify(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._trigger.notify(event.dest_path)


class WatchTrigger:
    """
    Debounced filesystem watcher.

    Each relevant event (re)starts a settle timer for its path; when the
    timer fires the path is turned into a FileTask by the scanner and
    submitted to the scheduler. With rescan_on_event the whole tree is
    rescanned instead.

    Args:
        scanner: Scanner shared with the startup scan
        scheduler: Scheduler shared with the startup scan
        settings: File section of the run settings
        stop_event: The run's stop signal
        observer_factory: Builds the watchdog observer (tests may replace it)
    """

    def __init__(
        self,
        scanner: FileScanner,
        scheduler,
        settings: FileSettings,
        stop_event: threading.Event,
        observer_factory=Observer,
    ):
        self.scanner = scanner
        self.scheduler = scheduler
        self.settings = settings
        self.stop_event = stop_event
        self.observer_factory = observer_factory
        self._observer = None
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = self.observer_factory()
        observer.schedule(_DropFileEventHandler(self), str(self.scanner.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(
            "Watch trigger started",
            extra={"root": str(self.scanner.root), "settle_delay_seconds": self.settings.settle_delay_seconds},
        )

    def stop(self) -> None:
        """Cancel pending settle timers, then stop and join the observer."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("Watch trigger stopped")

    def pending(self) -> int:
        with self._lock:
            return len(self._timers)

    def notify(self, path: str | Path) -> None:
        """Record an event for `path` and (re)start its settle timer."""
        if self.stop_event.is_set():
            return
        path = Path(path)
        if not self.scanner.is_candidate(path, require_file=False):
            return

        key = RESCAN_KEY if self.settings.rescan_on_event else str(path)
        timer = threading.Timer(self.settings.settle_delay_seconds, self._settled, args=(key, path))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()

    def _settled(self, key: str, path: Path) -> None:
        with self._lock:
            # Superseded by a later event, or cancelled by stop()
            if self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]

        if self.stop_event.is_set():
            return

        if key == RESCAN_KEY:
            logger.info("Watch event: rescanning drop-file root")
            self.scheduler.scan_and_schedule()
            return

        task = self.scanner.task_for(path)
        if task is None:
            return
        logger.info(
            "Watch event: file settled",
            extra={"path": str(path), "machine_name": task.machine_name},
        )
        self.scheduler.submit(task)
