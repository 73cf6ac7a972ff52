"""
Per-run shared state.

One RunContext is created per ingestion run and passed explicitly to every
component. It owns the stop signal, the run counters and the alert hook.
"""
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone

from forcam_ingest.core.models import RunSummary, SourceTally
from forcam_ingest.observability.alerts import AlertCallback, log_alert
from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)

# Counters that trigger the alert hook when they cross the threshold
FAILURE_COUNTERS = frozenset({
    "files_quarantined",
    "files_move_failed",
    "api_pages_failed",
    "batches_failed",
    "records_failed",
})

COUNTER_NAMES = (
    "files_discovered",
    "files_archived",
    "files_quarantined",
    "files_move_failed",
    "files_cancelled",
    "api_pages_ok",
    "api_pages_failed",
    "batches_success",
    "batches_partial",
    "batches_failed",
    "records_processed",
    "records_inserted",
    "records_updated",
    "records_skipped",
    "records_failed",
)


class RunContext:
    """
    Counters, stop signal and alerting for one run.

    Args:
        alert_threshold: A failure counter alerts when it first exceeds this,
                         and again at each further multiple
        alert_callback: Hook receiving (counter, value, message)
    """

    def __init__(self, alert_threshold: int = 10, alert_callback: AlertCallback | None = None):
        self.stop_event = threading.Event()
        self.alert_threshold = alert_threshold
        self.alert_callback = alert_callback or log_alert
        self.started_at = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()
        self._lock = threading.Lock()
        self._counters: dict[str, int] = dict.fromkeys(COUNTER_NAMES, 0)
        self._sources: dict[str, SourceTally] = defaultdict(SourceTally)
        self._alerted: dict[str, int] = {}

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def request_stop(self) -> None:
        if not self.stop_event.is_set():
            logger.info("Stop requested", extra={"event": "stop_requested"})
        self.stop_event.set()

    def incr(self, name: str, amount: int = 1) -> int:
        """Add to a counter and fire the alert hook when a failure threshold is crossed."""
        alert_level = None
        with self._lock:
            value = self._counters.get(name, 0) + amount
            self._counters[name] = value
            if name in FAILURE_COUNTERS and self.alert_threshold > 0:
                # level k once the value exceeds k * threshold
                level = (value - 1) // self.alert_threshold
                if level > self._alerted.get(name, 0):
                    self._alerted[name] = level
                    alert_level = level

        if alert_level is not None:
            self._fire_alert(name, value)
        return value

    def _fire_alert(self, name: str, value: int) -> None:
        message = f"{name} reached {value} (threshold {self.alert_threshold})"
        try:
            self.alert_callback(name, value, message)
        except Exception as e:
            logger.error("Alert callback failed", extra={"counter": name, "error": str(e)})

    def record_source(self, source: str, succeeded: bool) -> None:
        with self._lock:
            tally = self._sources[source]
            if succeeded:
                tally.succeeded += 1
            else:
                tally.failed += 1

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def snapshot(self) -> RunSummary:
        """Consistent point-in-time RunSummary."""
        with self._lock:
            counters = dict(self._counters)
            sources = {
                name: SourceTally(succeeded=t.succeeded, failed=t.failed)
                for name, t in self._sources.items()
            }

        processed = counters.get("records_processed", 0)
        stored = counters.get("records_inserted", 0) + counters.get("records_updated", 0)
        success_rate = round(100.0 * stored / processed, 2) if processed else 0.0

        return RunSummary(
            started_at=self.started_at,
            uptime_seconds=round(time.monotonic() - self._started_monotonic, 3),
            stopping=self.stopping,
            counters=counters,
            success_rate=min(success_rate, 100.0),
            sources=sources,
        )
