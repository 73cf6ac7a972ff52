"""
ImportBatch model representing one unit-of-work (one file or one API page).
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class ImportType(str, Enum):
    CSV = "CSV"
    JSON = "JSON"
    API = "API"


class BatchStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ImportBatch(BaseModel):
    """
    Summary of one unit-of-work against the store.

    Created when a file or API page begins processing and persisted once as
    an import_stats row after the batch completes or fails.

    Attributes:
        batch_id: Generated at batch start
        import_type: CSV, JSON or API
        source: File path or "<endpoint>#page=<n>"
        machine_name: Machine of a drop file (None for API pages)
        processed: Raw rows/items read
        inserted: Rows inserted by upsert
        updated: Rows updated by upsert
        skipped: Rows rejected by normalization
        failed: Rows the store rejected
        started_at: Batch start
        finished_at: Batch end (None while running)
        status: success, partial or failed
        error: Last error message, if any
    """

    batch_id: UUID = Field(default_factory=uuid4)
    import_type: ImportType
    source: str = Field(..., min_length=1)
    machine_name: str | None = None
    processed: int = Field(0, ge=0)
    inserted: int = Field(0, ge=0)
    updated: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    status: BatchStatus | None = None
    error: str | None = None

    @property
    def inserted_or_updated(self) -> int:
        return self.inserted + self.updated

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def finish(self, status: BatchStatus | None = None, error: str | None = None) -> "ImportBatch":
        """
        Close the batch and derive its status from the counters.

        Args:
            status: Force a status (used for aborted batches)
            error: Error message to attach

        Returns:
            The same batch, for chaining
        """
        self.finished_at = datetime.now(timezone.utc)
        if error is not None:
            self.error = error
        if status is not None:
            self.status = status
        elif self.skipped or self.failed:
            self.status = BatchStatus.PARTIAL
        else:
            self.status = BatchStatus.SUCCESS
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "batch_id": "5f0c8a2e-4d1b-4c3a-9a51-8d1e6f2b7c10",
                "import_type": "CSV",
                "source": "/data/forcam/MachineX/cycles_20250101.csv",
                "machine_name": "MachineX",
                "processed": 120,
                "inserted": 110,
                "updated": 8,
                "skipped": 2,
                "failed": 0,
                "status": "partial",
            }
        }
