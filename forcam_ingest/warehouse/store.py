"""
Idempotent cycle-time store.

Implements INSERT ... ON CONFLICT DO UPDATE against the dedup keys. One
UnitOfWork wraps one batch in a single transaction; each row is written
inside its own savepoint so a rejected row does not poison the batch.
"""

import json
from typing import Any

import psycopg
from psycopg import Connection, OperationalError
from psycopg.types.json import Jsonb

from forcam_ingest.core.dedup import ApiRecordKey, CycleTimeKey
from forcam_ingest.core.errors import RecordRejectedError, TransientStoreError
from forcam_ingest.core.models import ApiRecord, CycleTimeRecord, ImportBatch, UpsertOutcome
from forcam_ingest.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .schema_mgmt import TABLES

logger = get_logger(__name__)


UPSERT_CYCLE_TIME = """
    INSERT INTO cycle_time (
        machine_name, date, time, workplace, order_number, operation_number,
        material_number, cycle_seconds, import_timestamp, source_file, batch_id
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT ON CONSTRAINT uk_cycle_time_key DO UPDATE SET
        cycle_seconds = EXCLUDED.cycle_seconds,
        import_timestamp = EXCLUDED.import_timestamp,
        source_file = EXCLUDED.source_file,
        batch_id = EXCLUDED.batch_id
    RETURNING (xmax = 0) AS inserted
"""

UPSERT_API_RECORD = """
    INSERT INTO api_cycle_data (
        machine_name, material_number, cycle_time, operation_number, workplace,
        order_number, timestamp, import_timestamp, raw_payload, payload_digest,
        source_endpoint, batch_id
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT ON CONSTRAINT uk_api_cycle_data_key DO UPDATE SET
        cycle_time = EXCLUDED.cycle_time,
        raw_payload = EXCLUDED.raw_payload,
        import_timestamp = EXCLUDED.import_timestamp,
        batch_id = EXCLUDED.batch_id
    RETURNING (xmax = 0) AS inserted
"""

INSERT_ERROR_LOG = """
    INSERT INTO error_log (
        error_message, error_severity, machine_name, file_path, batch_id, error_context
    )
    VALUES (%s, %s, %s, %s, %s, %s)
"""

INSERT_IMPORT_STATS = """
    INSERT INTO import_stats (
        import_date, import_type, machine_name, source_path, records_processed,
        records_inserted, records_updated, records_skipped, records_failed,
        duration_ms, batch_id, status, error_message
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""


class UnitOfWork:
    """
    One batch transaction on a pooled connection.

    Use through CycleTimeStore.unit_of_work(); the connection goes back to
    the pool when the block exits. Leaving the block without commit() rolls
    the transaction back.
    """

    def __init__(self, pool: DatabaseConnectionPool, statement_timeout_ms: int = 60_000):
        self.pool = pool
        self.statement_timeout_ms = statement_timeout_ms
        self.conn: Connection | None = None
        self.closed = False

    def __enter__(self) -> "UnitOfWork":
        self.conn = self.pool.acquire()
        try:
            # Starts the batch transaction; later row writes nest as savepoints
            self.conn.execute(
                "SELECT set_config('statement_timeout', %s, true)",
                (str(self.statement_timeout_ms),),
            )
        except OperationalError as e:
            self.pool.release(self.conn)
            self.conn = None
            raise TransientStoreError(f"Could not begin batch transaction: {e}") from e
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if not self.closed:
                self.rollback()
        except TransientStoreError:
            logger.warning("Rollback failed on a broken connection")
        finally:
            self.pool.release(self.conn)
            self.conn = None
        return False

    def _upsert(self, sql: str, params: tuple, key: tuple) -> UpsertOutcome:
        try:
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
        except OperationalError as e:
            raise TransientStoreError(f"Connection lost during upsert: {e}") from e
        except psycopg.DatabaseError as e:
            raise RecordRejectedError(f"Store rejected row {key}: {e}") from e
        return UpsertOutcome.INSERTED if row["inserted"] else UpsertOutcome.UPDATED

    def upsert_cycle_time(self, record: CycleTimeRecord, key: CycleTimeKey) -> UpsertOutcome:
        """
        Insert or update one drop-file record by its dedup key.

        Raises:
            RecordRejectedError: The store refused the row (savepoint rolled back)
            TransientStoreError: The connection failed
        """
        params = (
            key.machine_name,
            record.date,
            record.time,
            record.workplace,
            record.order_number,
            key.operation_number,
            key.material_number,
            record.cycle_seconds,
            record.import_timestamp,
            record.source,
            record.batch_id,
        )
        return self._upsert(UPSERT_CYCLE_TIME, params, key)

    def upsert_api_record(self, record: ApiRecord, key: ApiRecordKey) -> UpsertOutcome:
        """Insert or update one API record by its dedup key."""
        params = (
            key.machine_name,
            record.material_number,
            record.cycle_time,
            record.operation_number,
            record.workplace,
            record.order_number,
            record.timestamp,
            record.import_timestamp,
            Jsonb(record.raw_payload),
            key.payload_digest,
            key.source_endpoint,
            record.batch_id,
        )
        return self._upsert(UPSERT_API_RECORD, params, key)

    def commit(self) -> None:
        try:
            self.conn.commit()
        except OperationalError as e:
            raise TransientStoreError(f"Commit failed: {e}") from e
        finally:
            self.closed = True

    def rollback(self) -> None:
        self.closed = True
        try:
            self.conn.rollback()
        except OperationalError as e:
            raise TransientStoreError(f"Rollback failed: {e}") from e


class CycleTimeStore:
    """
    Store adapter used by the batch loader.

    Args:
        pool: Open connection pool
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(self.pool)

    def log_error(self, message: str, severity: int = 16, context: dict[str, Any] | None = None) -> None:
        """
        Write one row to error_log.

        Fire-and-forget: any failure, including a cancelled connection
        checkout, is logged and swallowed. It never masks the error being
        reported or fails the batch that reports it.
        """
        context = context or {}
        try:
            self.pool.execute_command(
                INSERT_ERROR_LOG,
                (
                    message,
                    severity,
                    context.get("machine_name"),
                    context.get("file_path"),
                    context.get("batch_id"),
                    Jsonb(json.loads(json.dumps(context, default=str))),
                ),
            )
        except Exception as e:
            logger.warning(
                "Failed to write error_log row",
                extra={"error": str(e), "error_type": type(e).__name__, "original_message": message},
            )

    def record_batch_summary(self, batch: ImportBatch) -> None:
        """
        Persist the import_stats row for one finished batch.

        Raises:
            TransientStoreError: If the store cannot be reached
            psycopg.DatabaseError: If the insert is refused
        """
        try:
            self.pool.execute_command(
                INSERT_IMPORT_STATS,
                (
                    batch.started_at,
                    batch.import_type.value,
                    batch.machine_name,
                    batch.source,
                    batch.processed,
                    batch.inserted,
                    batch.updated,
                    batch.skipped,
                    batch.failed,
                    batch.duration_ms,
                    batch.batch_id,
                    batch.status.value if batch.status else "failed",
                    batch.error,
                ),
            )
        except OperationalError as e:
            raise TransientStoreError(f"Could not record batch summary: {e}") from e

    def count_rows(self, table: str) -> int:
        """Row count of one pipeline table (used by status reports and tests)."""
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        rows = self.pool.execute_query(f"SELECT COUNT(*) AS n FROM {table}")
        return rows[0]["n"]
