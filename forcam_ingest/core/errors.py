"""
Error taxonomy for the ingestion pipeline.

Row errors stay inside their batch, batch errors stay inside their file or
API page. Only FatalConfigurationError is allowed to halt a whole run.
"""


class IngestError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(IngestError):
    """Raised when a single field of a raw row fails a validation rule."""

    def __init__(self, rule_name: str, field_name: str, message: str):
        self.rule_name = rule_name
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_name}] {field_name}: {message}")


class LockTimeoutError(IngestError):
    """A drop file never became exclusively readable."""

    def __init__(self, path: str, attempts: int, wait_seconds: float):
        self.path = path
        self.attempts = attempts
        self.wait_seconds = wait_seconds
        super().__init__(
            f"File still locked after {attempts} attempts "
            f"({wait_seconds}s apart): {path}"
        )


class TransientStoreError(IngestError):
    """Connection refused, pool timeout or connection lost mid-batch."""


class TransientApiError(IngestError):
    """Network failure, timeout, 429 or 5xx from the REST source."""


class ApiRequestError(IngestError):
    """Non-retryable failure from the REST source (4xx, malformed body)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class BatchBudgetExceeded(IngestError):
    """Too many row-level failures inside one batch."""

    def __init__(self, batch_id: str, failed: int, budget: int):
        self.batch_id = batch_id
        self.failed = failed
        self.budget = budget
        super().__init__(
            f"Batch {batch_id} aborted: {failed} row failures exceed budget of {budget}"
        )


class FatalConfigurationError(IngestError):
    """Missing credential, endpoint or invalid setting. Halts the run."""


class OperationCancelled(IngestError):
    """The run was asked to stop while an operation was waiting or retrying."""


class RecordRejectedError(IngestError):
    """The store refused one row (constraint or data error). Counted as failed."""
