"""
Batch loader.

Runs one file or one API page as a single unit-of-work: normalize each row,
derive its dedup key, upsert it inside a savepoint and count the outcome.
The batch commits as a whole, or rolls back as a whole when the row-failure
budget is exceeded or the store connection fails.
"""
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

from forcam_ingest.core.config import LoadSettings
from forcam_ingest.core.dedup import dedup_key, format_key
from forcam_ingest.core.errors import BatchBudgetExceeded, RecordRejectedError
from forcam_ingest.core.models import (
    ApiRecord,
    BatchStatus,
    ImportBatch,
    ImportType,
    NormalizationResult,
    UpsertOutcome,
)
from forcam_ingest.core.normalizer import RecordNormalizer
from forcam_ingest.observability import metrics
from forcam_ingest.observability.logger import get_logger
from forcam_ingest.pipeline.run_context import RunContext

logger = get_logger(__name__)

SEVERITY_ROW = 10
SEVERITY_BATCH = 16


class BatchSource(BaseModel):
    """
    Input of one batch.

    Attributes:
        import_type: CSV, JSON or API
        descriptor: File path or "<endpoint>#page=<n>"
        machine_name: Owning machine (drop files)
        endpoint: Endpoint path (API pages)
        rows: Raw rows in source order
    """

    import_type: ImportType
    descriptor: str = Field(..., min_length=1)
    machine_name: str | None = None
    endpoint: str | None = None
    rows: list[Any] = Field(default_factory=list)


class BatchLoader:
    """
    Loads BatchSources into the store.

    Args:
        store: Store adapter with unit_of_work(), log_error(), record_batch_summary()
        normalizer: Record normalizer
        settings: Load section of the run settings
        context: Run counters (optional)
    """

    def __init__(
        self,
        store,
        normalizer: RecordNormalizer,
        settings: LoadSettings | None = None,
        context: RunContext | None = None,
    ):
        self.store = store
        self.normalizer = normalizer
        self.settings = settings or LoadSettings()
        self.context = context

    def _normalize(self, source: BatchSource, raw: Any, batch: ImportBatch) -> NormalizationResult:
        if source.import_type is ImportType.API:
            return self.normalizer.normalize_api_item(raw, source.endpoint or source.descriptor, batch.batch_id)
        return self.normalizer.normalize_row(raw, source.machine_name or "", source.descriptor, batch.batch_id)

    def _report(self, batch: ImportBatch, sample: dict[str, int], message: str,
                severity: int, extra: dict[str, Any] | None = None) -> None:
        """Send one row-level problem to the error sink, up to error_sample_limit per batch."""
        if sample["sent"] >= self.settings.error_sample_limit:
            sample["suppressed"] += 1
            return
        sample["sent"] += 1
        self.store.log_error(
            message,
            severity,
            {
                "machine_name": batch.machine_name,
                "file_path": batch.source,
                "batch_id": str(batch.batch_id),
                **(extra or {}),
            },
        )

    def _load(self, source: BatchSource, rows: Iterable[Any], batch: ImportBatch,
              sample: dict[str, int]) -> None:
        with self.store.unit_of_work() as uow:
            for row_number, raw in enumerate(rows, start=1):
                batch.processed += 1
                result = self._normalize(source, raw, batch)
                if not result.ok:
                    batch.skipped += 1
                    logger.debug(
                        "Row rejected",
                        extra={"source": batch.source, "row": row_number, "reason": str(result.reject)},
                    )
                    self._report(batch, sample, f"Row {row_number} rejected: {result.reject}",
                                 SEVERITY_ROW, {"row": row_number, "field": result.reject.field_name})
                    continue

                record = result.record
                key = dedup_key(record)
                try:
                    if isinstance(record, ApiRecord):
                        outcome = uow.upsert_api_record(record, key)
                    else:
                        outcome = uow.upsert_cycle_time(record, key)
                except RecordRejectedError as e:
                    batch.failed += 1
                    batch.error = str(e)
                    self._report(batch, sample, f"Row {row_number} {format_key(key)} failed: {e}",
                                 SEVERITY_ROW, {"row": row_number})
                    if batch.failed > self.settings.max_row_failures:
                        raise BatchBudgetExceeded(str(batch.batch_id), batch.failed,
                                                  self.settings.max_row_failures) from e
                    continue

                if outcome is UpsertOutcome.INSERTED:
                    batch.inserted += 1
                else:
                    batch.updated += 1

            uow.commit()

    def run_batch(self, source: BatchSource) -> ImportBatch:
        """
        Load one batch.

        Args:
            source: Rows plus their origin

        Returns:
            The finished ImportBatch (success, partial or failed)

        Raises:
            TransientStoreError: The connection failed; the batch was rolled
                back and may be retried as a whole
        """
        batch = ImportBatch(
            import_type=source.import_type,
            source=source.descriptor,
            machine_name=source.machine_name,
        )
        sample = {"sent": 0, "suppressed": 0}
        pending: BaseException | None = None

        try:
            with metrics.track_duration(metrics.batch_duration_seconds, import_type=source.import_type.value):
                self._load(source, source.rows, batch, sample)
            batch.finish()
        except BatchBudgetExceeded as e:
            self._discard_writes(batch)
            batch.finish(BatchStatus.FAILED, str(e))
            logger.error(
                "Batch rolled back: row failure budget exceeded",
                extra={"batch_id": str(batch.batch_id), "source": batch.source,
                       "failed": e.failed, "budget": e.budget},
            )
            self.store.log_error(str(e), SEVERITY_BATCH, {
                "machine_name": batch.machine_name, "file_path": batch.source,
                "batch_id": str(batch.batch_id)})
        except Exception as e:
            self._discard_writes(batch)
            batch.finish(BatchStatus.FAILED, str(e))
            logger.error(
                "Batch rolled back",
                extra={"batch_id": str(batch.batch_id), "source": batch.source,
                       "error": str(e), "error_type": type(e).__name__},
            )
            metrics.record_error(type(e).__name__, "batch_loader")
            pending = e

        if sample["suppressed"]:
            logger.warning(
                "Row errors beyond sample limit not sent to error log",
                extra={"batch_id": str(batch.batch_id), "suppressed": sample["suppressed"]},
            )

        self._record_summary(batch)
        self._count(batch)

        if pending is not None:
            raise pending
        return batch

    @staticmethod
    def _discard_writes(batch: ImportBatch) -> None:
        # Rolled back: nothing this batch wrote survives
        batch.inserted = 0
        batch.updated = 0

    def _record_summary(self, batch: ImportBatch) -> None:
        try:
            self.store.record_batch_summary(batch)
        except Exception as e:
            logger.error(
                "Failed to record batch summary",
                extra={"batch_id": str(batch.batch_id), "error": str(e)},
            )

    def _count(self, batch: ImportBatch) -> None:
        status = batch.status.value
        metrics.record_batch(batch.import_type.value, status, batch.inserted, batch.updated,
                             batch.skipped, batch.failed)
        log = logger.warning if batch.status is BatchStatus.FAILED else logger.info
        log(
            "Batch finished",
            extra={
                "event": "batch_finished",
                "batch_id": str(batch.batch_id),
                "import_type": batch.import_type.value,
                "source": batch.source,
                "machine_name": batch.machine_name,
                "status": status,
                "processed": batch.processed,
                "inserted": batch.inserted,
                "updated": batch.updated,
                "skipped": batch.skipped,
                "failed": batch.failed,
                "duration_ms": batch.duration_ms,
            },
        )
        if self.context is None:
            return
        self.context.incr(f"batches_{status}")
        self.context.incr("records_processed", batch.processed)
        self.context.incr("records_inserted", batch.inserted)
        self.context.incr("records_updated", batch.updated)
        self.context.incr("records_skipped", batch.skipped)
        self.context.incr("records_failed", batch.failed)


