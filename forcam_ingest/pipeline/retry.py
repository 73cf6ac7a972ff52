"""
Retry/backoff executor.

Every retried operation in the pipeline goes through RetryExecutor: pool
open, connection acquisition, API page fetch, per-file load and file moves.
The wait after failure k is base_delay * k seconds. The first attempt always
runs; a stop request is honoured between attempts, so work already in
flight finishes while retries end early.
"""
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from forcam_ingest.core.errors import OperationCancelled
from forcam_ingest.observability import metrics
from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of RetryExecutor.execute."""

    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    total_delay: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the last error."""
        if self.error is not None:
            raise self.error
        return self.value


def backoff_delays(max_attempts: int, base_delay: float) -> list[float]:
    """Waits between attempts: [base*1, base*2, ..., base*(max_attempts-1)]."""
    return [base_delay * k for k in range(1, max_attempts)]


class RetryExecutor:
    """
    Runs an operation up to max_attempts times with linear backoff.

    Args:
        stop_event: Set when the run is stopping; waits observe it
        wait: Replacement for stop_event.wait, (seconds) -> stop requested.
              Tests inject a recorder here instead of sleeping.
    """

    def __init__(
        self,
        stop_event: threading.Event | None = None,
        wait: Callable[[float], bool] | None = None,
    ):
        self.stop_event = stop_event or threading.Event()
        self._wait = wait or self.stop_event.wait

    def _check_stop(self, operation_name: str, attempts: int) -> None:
        if self.stop_event.is_set():
            raise OperationCancelled(f"{operation_name} cancelled after {attempts} attempt(s)")

    def execute(
        self,
        op: Callable[[], T],
        max_attempts: int,
        base_delay: float,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        operation_name: str = "operation",
    ) -> RetryOutcome[T]:
        """
        Run `op` until it succeeds or attempts run out.

        Args:
            op: Zero-argument callable
            max_attempts: Attempts including the first (>= 1)
            base_delay: Seconds; the wait after failure k is base_delay * k
            retry_on: Exception types worth retrying; anything else ends at once
            operation_name: Used in logs and the retries metric

        Returns:
            RetryOutcome with the value, or with the last error

        Raises:
            OperationCancelled: If the stop event is set after a failed attempt
                or during the wait before the next one
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        outcome: RetryOutcome[T] = RetryOutcome()
        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            try:
                outcome.value = op()
                outcome.error = None
                return outcome
            except OperationCancelled:
                raise
            except retry_on as e:
                outcome.error = e
            except Exception as e:
                outcome.error = e
                logger.error(
                    f"{operation_name} failed with non-retryable error",
                    extra={"operation": operation_name, "attempt": attempt, "error": str(e),
                           "error_type": type(e).__name__},
                )
                return outcome

            if attempt == max_attempts:
                break
            self._check_stop(operation_name, attempt)

            delay = base_delay * attempt
            metrics.retries_total.labels(operation=operation_name).inc()
            logger.warning(
                f"{operation_name} failed, retrying",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": delay,
                    "error": str(outcome.error),
                    "error_type": type(outcome.error).__name__,
                },
            )
            if self._wait(delay):
                raise OperationCancelled(f"{operation_name} cancelled while waiting to retry")
            outcome.total_delay += delay

        logger.error(
            f"{operation_name} failed after {outcome.attempts} attempts",
            extra={"operation": operation_name, "attempts": outcome.attempts, "error": str(outcome.error)},
        )
        return outcome

    def call(self, op: Callable[[], T], max_attempts: int, base_delay: float, **kwargs: Any) -> T:
        """execute(...).unwrap()"""
        return self.execute(op, max_attempts, base_delay, **kwargs).unwrap()
