"""
Schema management for the cycle-time store.

Creates the four tables the pipeline writes to. Every statement is
idempotent (IF NOT EXISTS), so ensure_schema can run on each start.
"""

from .connection import DatabaseConnectionPool
from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)

# Unique keys use NULLS NOT DISTINCT (PostgreSQL 15+) so rows with a missing
# material/operation still collide on re-ingestion. API rows set exactly one
# of timestamp and payload_digest.
DDL_STATEMENTS: list[tuple[str, str]] = [
    (
        "cycle_time",
        """
        CREATE TABLE IF NOT EXISTS cycle_time (
            id BIGSERIAL PRIMARY KEY,
            machine_name VARCHAR(100) NOT NULL,
            date DATE NOT NULL,
            time TIME(3) NOT NULL,
            workplace VARCHAR(50),
            order_number VARCHAR(50),
            operation_number VARCHAR(50),
            material_number VARCHAR(50),
            cycle_seconds NUMERIC(18, 6),
            import_timestamp TIMESTAMPTZ(3) NOT NULL DEFAULT NOW(),
            source_file VARCHAR(500),
            batch_id UUID,
            CONSTRAINT uk_cycle_time_key UNIQUE NULLS NOT DISTINCT
                (machine_name, date, time, material_number, operation_number)
        )
        """,
    ),
    (
        "cycle_time indexes",
        """
        CREATE INDEX IF NOT EXISTS ix_cycle_time_machine_date ON cycle_time (machine_name, date);
        CREATE INDEX IF NOT EXISTS ix_cycle_time_material ON cycle_time (material_number);
        CREATE INDEX IF NOT EXISTS ix_cycle_time_import_ts ON cycle_time (import_timestamp);
        CREATE INDEX IF NOT EXISTS ix_cycle_time_batch ON cycle_time (batch_id)
        """,
    ),
    (
        "api_cycle_data",
        """
        CREATE TABLE IF NOT EXISTS api_cycle_data (
            id BIGSERIAL PRIMARY KEY,
            machine_name VARCHAR(100) NOT NULL,
            material_number VARCHAR(100),
            cycle_time NUMERIC(18, 6),
            operation_number VARCHAR(100),
            workplace VARCHAR(100),
            order_number VARCHAR(100),
            timestamp TIMESTAMPTZ(3),
            import_timestamp TIMESTAMPTZ(3) NOT NULL DEFAULT NOW(),
            raw_payload JSONB,
            payload_digest CHAR(64),
            source_endpoint VARCHAR(200) NOT NULL,
            batch_id UUID,
            CONSTRAINT uk_api_cycle_data_key UNIQUE NULLS NOT DISTINCT
                (machine_name, timestamp, source_endpoint, payload_digest)
        )
        """,
    ),
    (
        "api_cycle_data indexes",
        """
        CREATE INDEX IF NOT EXISTS ix_api_data_material ON api_cycle_data (material_number);
        CREATE INDEX IF NOT EXISTS ix_api_data_import_ts ON api_cycle_data (import_timestamp);
        CREATE INDEX IF NOT EXISTS ix_api_data_batch ON api_cycle_data (batch_id)
        """,
    ),
    (
        "error_log",
        """
        CREATE TABLE IF NOT EXISTS error_log (
            id BIGSERIAL PRIMARY KEY,
            error_message TEXT NOT NULL,
            error_date TIMESTAMPTZ(3) NOT NULL DEFAULT NOW(),
            error_severity INT,
            machine_name VARCHAR(100),
            file_path VARCHAR(500),
            batch_id UUID,
            error_context JSONB
        );
        CREATE INDEX IF NOT EXISTS ix_error_log_date ON error_log (error_date);
        CREATE INDEX IF NOT EXISTS ix_error_log_machine ON error_log (machine_name);
        CREATE INDEX IF NOT EXISTS ix_error_log_batch ON error_log (batch_id)
        """,
    ),
    (
        "import_stats",
        """
        CREATE TABLE IF NOT EXISTS import_stats (
            id BIGSERIAL PRIMARY KEY,
            import_date TIMESTAMPTZ(3) NOT NULL DEFAULT NOW(),
            import_type VARCHAR(20) NOT NULL,
            machine_name VARCHAR(100),
            source_path VARCHAR(500),
            records_processed INT NOT NULL DEFAULT 0,
            records_inserted INT NOT NULL DEFAULT 0,
            records_updated INT NOT NULL DEFAULT 0,
            records_skipped INT NOT NULL DEFAULT 0,
            records_failed INT NOT NULL DEFAULT 0,
            duration_ms INT NOT NULL DEFAULT 0,
            batch_id UUID,
            status VARCHAR(20) NOT NULL DEFAULT 'success',
            error_message TEXT
        );
        CREATE INDEX IF NOT EXISTS ix_import_stats_date ON import_stats (import_date);
        CREATE INDEX IF NOT EXISTS ix_import_stats_type ON import_stats (import_type);
        CREATE INDEX IF NOT EXISTS ix_import_stats_batch ON import_stats (batch_id)
        """,
    ),
]

TABLES = ("cycle_time", "api_cycle_data", "error_log", "import_stats")


def ensure_schema(pool: DatabaseConnectionPool) -> None:
    """
    Create the pipeline tables and indexes if they do not exist.

    Args:
        pool: Open connection pool
    """
    for name, ddl in DDL_STATEMENTS:
        for statement in (s.strip() for s in ddl.split(";")):
            if statement:
                pool.execute_command(statement)
        logger.debug("Schema object ensured", extra={"object": name})
    logger.info("Schema ready", extra={"tables": list(TABLES)})
