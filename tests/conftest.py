"""
Pytest configuration and fixtures for forcam-ingest tests

This module provides shared fixtures for unit and integration tests: an
in-memory store honouring the unit-of-work contract, drop-file trees and a
PostgreSQL testcontainer.
"""
import threading
from pathlib import Path
from typing import Callable, Generator

import pytest

from forcam_ingest.core.config import FileSettings, LoadSettings
from forcam_ingest.core.errors import RecordRejectedError, TransientStoreError
from forcam_ingest.core.models import ImportBatch, UpsertOutcome
from forcam_ingest.core.normalizer import RecordNormalizer
from forcam_ingest.pipeline.batch_loader import BatchLoader
from forcam_ingest.pipeline.retry import RetryExecutor
from forcam_ingest.pipeline.run_context import RunContext


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


CSV_HEADER = "date,time,workplace,ordernumber,operationnumber,materialnumber,te_sap\n"


# =======================
# IN-MEMORY STORE
# =======================

class FakeUnitOfWork:
    """Stages upserts and applies them to the store only on commit."""

    def __init__(self, store: "FakeStore"):
        self.store = store
        self.staged: dict = {}
        self.closed = False

    def __enter__(self):
        self.store.opened += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.closed:
            self.rollback()
        return False

    def _upsert(self, record, key) -> UpsertOutcome:
        if self.store.on_upsert is not None:
            self.store.on_upsert(record)
        with self.store.lock:
            if self.store.transient_failures > 0:
                self.store.transient_failures -= 1
                raise TransientStoreError("connection lost")
        if self.store.reject(record):
            raise RecordRejectedError(f"store rejected {key}")
        with self.store.lock:
            exists = key in self.staged or key in self.store.rows
        self.staged[key] = record
        return UpsertOutcome.UPDATED if exists else UpsertOutcome.INSERTED

    def upsert_cycle_time(self, record, key) -> UpsertOutcome:
        return self._upsert(record, key)

    def upsert_api_record(self, record, key) -> UpsertOutcome:
        return self._upsert(record, key)

    def commit(self) -> None:
        with self.store.lock:
            self.store.rows.update(self.staged)
            self.store.commits += 1
        self.closed = True

    def rollback(self) -> None:
        self.staged.clear()
        with self.store.lock:
            self.store.rollbacks += 1
        self.closed = True


class FakeStore:
    """
    Store double for unit tests.

    Attributes:
        rows: Committed rows by dedup key
        errors: (message, severity, context) sent to the error sink
        summaries: Batches passed to record_batch_summary
        reject: Predicate marking records the store refuses
        transient_failures: Upserts left that fail with TransientStoreError
        on_upsert: Called with each record before it is staged
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.rows: dict = {}
        self.errors: list[tuple[str, int, dict]] = []
        self.summaries: list[ImportBatch] = []
        self.reject: Callable = lambda record: False
        self.transient_failures = 0
        self.on_upsert: Callable | None = None
        self.opened = 0
        self.commits = 0
        self.rollbacks = 0

    def unit_of_work(self) -> FakeUnitOfWork:
        return FakeUnitOfWork(self)

    def log_error(self, message: str, severity: int = 16, context: dict | None = None) -> None:
        with self.lock:
            self.errors.append((message, severity, context or {}))

    def record_batch_summary(self, batch: ImportBatch) -> None:
        with self.lock:
            self.summaries.append(batch.model_copy())


class RecordingWait:
    """Replacement for Event.wait that records delays instead of sleeping."""

    def __init__(self, stop_after: int | None = None):
        self.delays: list[float] = []
        self.stop_after = stop_after

    def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        return self.stop_after is not None and len(self.delays) >= self.stop_after


# =======================
# FIXTURES
# =======================

@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def run_context() -> RunContext:
    return RunContext(alert_threshold=1000, alert_callback=lambda *args: None)


@pytest.fixture
def recording_wait():
    """The RecordingWait class, for tests that build their own executors."""
    return RecordingWait


@pytest.fixture
def no_wait_retry(run_context) -> RetryExecutor:
    """Retry executor that never sleeps."""
    return RetryExecutor(run_context.stop_event, wait=RecordingWait())


@pytest.fixture
def load_settings() -> LoadSettings:
    return LoadSettings(
        max_row_failures=3,
        load_max_attempts=3,
        load_base_delay_seconds=0,
        move_max_attempts=2,
        move_base_delay_seconds=0,
    )


@pytest.fixture
def batch_loader(fake_store, load_settings, run_context) -> BatchLoader:
    return BatchLoader(fake_store, RecordNormalizer(), load_settings, run_context)


@pytest.fixture
def drop_root(tmp_path) -> Path:
    """Empty drop-file root."""
    root = tmp_path / "forcam"
    root.mkdir()
    return root


@pytest.fixture
def file_settings(drop_root) -> FileSettings:
    return FileSettings(
        root=drop_root,
        file_unlock_retries=3,
        file_unlock_wait_seconds=0,
        max_workers=2,
        settle_delay_seconds=0.05,
    )


@pytest.fixture
def write_csv(drop_root) -> Callable[..., Path]:
    """Write <root>/<machine>/<name> with a header and the given data lines."""

    def _write(machine: str, name: str, lines: list[str], header: bool = True) -> Path:
        machine_dir = drop_root / machine
        machine_dir.mkdir(exist_ok=True)
        path = machine_dir / name
        content = (CSV_HEADER if header else "") + "".join(line + "\n" for line in lines)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance
    """
    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_forcam",
        password="test_password",
        dbname="test_forcam",
    ) as postgres:
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="session")
def database_settings(postgres_container):
    from forcam_ingest.core.config import DatabaseSettings

    return DatabaseSettings(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_forcam",
        user="test_forcam",
        password="test_password",
        min_size=1,
        max_size=4,
    )


@pytest.fixture
def db_pool(database_settings) -> Generator:
    """
    Open pool on a freshly created schema

    Yields:
        DatabaseConnectionPool with empty pipeline tables
    """
    from forcam_ingest.warehouse.connection import DatabaseConnectionPool
    from forcam_ingest.warehouse.schema_mgmt import TABLES, ensure_schema

    pool = DatabaseConnectionPool(database_settings)
    pool.open()
    ensure_schema(pool)
    for table in TABLES:
        pool.execute_command(f"TRUNCATE TABLE {table}")
    yield pool
    pool.close()
