"""
End-to-end tests: drop files through scheduler, lifecycle and PostgreSQL.
"""

import pytest

from forcam_ingest.core.normalizer import RecordNormalizer
from forcam_ingest.pipeline.batch_loader import BatchLoader
from forcam_ingest.pipeline.file_lifecycle import FileLifecycleManager
from forcam_ingest.pipeline.retry import RetryExecutor
from forcam_ingest.pipeline.run_context import RunContext
from forcam_ingest.pipeline.scheduler import IngestionScheduler
from forcam_ingest.sources.file_scanner import FileScanner
from forcam_ingest.sources.readers import DropFileReader
from forcam_ingest.warehouse.store import CycleTimeStore

pytestmark = [pytest.mark.e2e, pytest.mark.integration]

LINES = [
    "2025-01-01,08:00:00,WP001,ORD123,OP456,MAT789,45.5",
    "2025-01-01,08:01:00,WP001,ORD123,OP456,MAT789,46.25",
    "2025-01-01,08:02:00,WP001,ORD123,OP456,MAT789,abc",
]


@pytest.fixture
def run_files(db_pool, drop_root, file_settings, load_settings, recording_wait):
    """Run one scan-and-process pass; returns (summary, scheduler)."""

    def _run():
        context = RunContext(alert_threshold=100, alert_callback=lambda *args: None)
        store = CycleTimeStore(db_pool)
        loader = BatchLoader(store, RecordNormalizer(), load_settings, context)
        lifecycle = FileLifecycleManager(
            reader=DropFileReader(file_settings),
            loader=loader,
            retry=RetryExecutor(context.stop_event, wait=recording_wait()),
            file_settings=file_settings,
            load_settings=load_settings,
            context=context,
        )
        scheduler = IngestionScheduler(
            lifecycle, context, scanner=FileScanner(drop_root, file_settings), max_workers=2
        )
        return scheduler.run(scan=True, api=False), scheduler

    return _run


def test_drop_file_is_loaded_archived_and_logged(run_files, write_csv, db_pool):
    """Valid rows load, the bad row is skipped and logged, the file is archived"""
    path = write_csv("MachineX", "cycles.csv", LINES)

    summary, scheduler = run_files()

    assert summary.count("files_archived") == 1
    assert summary.count("records_inserted") == 2
    assert summary.count("records_skipped") == 1
    assert not path.exists()
    assert len(list((path.parent / "Backup").iterdir())) == 1

    rows = db_pool.execute_query("SELECT time, cycle_seconds FROM cycle_time ORDER BY time")
    assert [str(r["cycle_seconds"]) for r in rows] == ["45.500000", "46.250000"]

    stats = db_pool.execute_query("SELECT status, records_processed FROM import_stats")
    assert stats == [{"status": "partial", "records_processed": 3}]

    errors = db_pool.execute_query("SELECT error_message, error_severity FROM error_log")
    assert len(errors) == 1
    assert "cycle_seconds" in errors[0]["error_message"]


def test_reingesting_the_same_rows_updates_in_place(run_files, write_csv, db_pool):
    write_csv("MachineX", "cycles.csv", LINES[:2])
    run_files()
    write_csv("MachineX", "cycles_again.csv", LINES[:2])

    summary, _ = run_files()

    assert summary.count("records_inserted") == 0
    assert summary.count("records_updated") == 2
    assert db_pool.execute_query("SELECT COUNT(*) AS n FROM cycle_time")[0]["n"] == 2


def test_many_machines_in_parallel(run_files, write_csv, db_pool):
    for machine in ("M1", "M2", "M3", "M4"):
        write_csv(machine, "cycles.csv", LINES[:2])

    summary, scheduler = run_files()

    assert summary.count("files_archived") == 4
    assert len(scheduler.completed) == 4
    assert db_pool.execute_query("SELECT COUNT(*) AS n FROM cycle_time")[0]["n"] == 8
    assert set(summary.sources) == {"M1", "M2", "M3", "M4"}
