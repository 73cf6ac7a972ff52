"""
CLI for running cycle-time ingestion.

Commands:
  run          Scan drop files, poll the API, optionally keep watching
  ingest-file  Push one file through the lifecycle
  init-db      Create the store tables

Exit codes: 0 normal, 2 fatal configuration error, 1 unhandled crash.
"""
import argparse
import json
import signal
import sys
from pathlib import Path

from forcam_ingest.core.config import IngestSettings, load_settings
from forcam_ingest.core.errors import FatalConfigurationError
from forcam_ingest.core.models import FileTask
from forcam_ingest.core.normalizer import RecordNormalizer
from forcam_ingest.observability.alerts import log_alert, webhook_alert
from forcam_ingest.observability.logger import configure_logging, get_logger
from forcam_ingest.observability.metrics import start_metrics_server
from forcam_ingest.pipeline.api_ingest import ApiIngestor
from forcam_ingest.pipeline.batch_loader import BatchLoader
from forcam_ingest.pipeline.file_lifecycle import FileLifecycleManager
from forcam_ingest.pipeline.retry import RetryExecutor
from forcam_ingest.pipeline.run_context import RunContext
from forcam_ingest.pipeline.scheduler import IngestionScheduler
from forcam_ingest.sources.api_client import RestApiClient
from forcam_ingest.sources.file_scanner import FileScanner
from forcam_ingest.sources.readers import DropFileReader
from forcam_ingest.sources.watch import WatchTrigger
from forcam_ingest.warehouse.connection import DatabaseConnectionPool
from forcam_ingest.warehouse.schema_mgmt import ensure_schema
from forcam_ingest.warehouse.store import CycleTimeStore

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_CRASH = 1
EXIT_CONFIG = 2


def install_signal_handlers(context: RunContext) -> None:
    """Turn SIGINT/SIGTERM into a graceful stop of the run."""

    def signal_handler(signum, frame):  # type: ignore[no-untyped-def]
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
        context.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def _prepare(args: argparse.Namespace) -> tuple[IngestSettings, RunContext]:
    settings = load_settings(args.config)
    configure_logging(settings.observability.log_level, settings.observability.log_format)
    settings.require_database()

    url = settings.observability.alert_webhook_url
    context = RunContext(
        alert_threshold=settings.observability.alert_failure_threshold,
        alert_callback=webhook_alert(url) if url else log_alert,
    )
    return settings, context


def _build_lifecycle(
    settings: IngestSettings,
    context: RunContext,
    retry: RetryExecutor,
    loader: BatchLoader,
) -> FileLifecycleManager:
    return FileLifecycleManager(
        reader=DropFileReader(settings.files),
        loader=loader,
        retry=retry,
        file_settings=settings.files,
        load_settings=settings.load,
        context=context,
    )


def run_command(args: argparse.Namespace) -> int:
    """
    Full ingestion run.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code
    """
    settings, context = _prepare(args)

    use_files = not args.no_files
    use_api = not args.no_api and bool(settings.api.endpoints)
    use_watch = use_files and (args.watch or settings.files.watch)
    root = settings.require_file_root() if use_files else None
    if not args.no_api and not settings.api.endpoints:
        logger.info("No API endpoints configured; API ingestion disabled")

    install_signal_handlers(context)
    if settings.observability.metrics_port:
        start_metrics_server(settings.observability.metrics_port)

    retry = RetryExecutor(context.stop_event)
    pool = DatabaseConnectionPool(settings.database, retry)
    client = RestApiClient(settings.api) if use_api else None
    pool.open()
    try:
        store = CycleTimeStore(pool)
        normalizer = RecordNormalizer(settings.load.round_cycle_time, settings.load.decimal_places)
        loader = BatchLoader(store, normalizer, settings.load, context)

        scanner = FileScanner(root, settings.files) if use_files else None
        api_ingestor = None
        if client is not None:
            api_ingestor = ApiIngestor(client, loader, retry, settings.api, settings.load, context)

        scheduler = IngestionScheduler(
            lifecycle=_build_lifecycle(settings, context, retry, loader),
            context=context,
            scanner=scanner,
            api_ingestor=api_ingestor,
            max_workers=settings.files.max_workers,
        )
        watch_trigger = None
        if use_watch:
            watch_trigger = WatchTrigger(scanner, scheduler, settings.files, context.stop_event)

        summary = scheduler.run(scan=use_files, api=use_api, watch_trigger=watch_trigger)
    finally:
        if client is not None:
            client.close()
        pool.close()

    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return EXIT_OK


def ingest_file_command(args: argparse.Namespace) -> int:
    """Run one file through lock-wait, load and archive/quarantine."""
    settings, context = _prepare(args)
    install_signal_handlers(context)

    path = Path(args.path)
    if not path.is_file():
        raise FatalConfigurationError(f"File not found: {path}")
    machine_name = args.machine or path.parent.name

    retry = RetryExecutor(context.stop_event)
    pool = DatabaseConnectionPool(settings.database, retry)
    pool.open()
    try:
        loader = BatchLoader(
            CycleTimeStore(pool),
            RecordNormalizer(settings.load.round_cycle_time, settings.load.decimal_places),
            settings.load,
            context,
        )
        lifecycle = _build_lifecycle(settings, context, retry, loader)
        task = lifecycle.process(FileTask(path=path, machine_name=machine_name))
    finally:
        pool.close()

    print(json.dumps(task.model_dump(mode="json"), indent=2))
    return EXIT_OK


def init_db_command(args: argparse.Namespace) -> int:
    """Create the pipeline tables."""
    settings = load_settings(args.config)
    configure_logging(settings.observability.log_level, settings.observability.log_format)
    settings.require_database()

    with DatabaseConnectionPool(settings.database) as pool:
        ensure_schema(pool)
    print(json.dumps({"status": "ok", "action": "init-db"}))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forcam-ingest",
        description="Ingest FORCAM cycle-time data from drop files and the REST API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One pass over drop files and API endpoints
  %(prog)s run --config config/ingest.yaml

  # Keep watching the drop-file root after the startup scan
  %(prog)s run --config config/ingest.yaml --watch --no-api

  # Load a single file
  %(prog)s ingest-file --machine MachineX /data/forcam/MachineX/cycles.csv

  # Create tables
  %(prog)s init-db --config config/ingest.yaml
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="YAML settings file (environment variables override it)")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run ingestion")
    run_parser.add_argument("--no-files", action="store_true", help="Skip drop-file ingestion")
    run_parser.add_argument("--no-api", action="store_true", help="Skip API ingestion")
    run_parser.add_argument("--watch", action="store_true",
                            help="Keep watching the drop-file root until SIGINT/SIGTERM")

    file_parser = subparsers.add_parser("ingest-file", parents=[common], help="Ingest one drop file")
    file_parser.add_argument("--machine", help="Machine name (default: parent directory name)")
    file_parser.add_argument("path", help="Path to the CSV or JSON file")

    subparsers.add_parser("init-db", parents=[common], help="Create store tables")

    return parser


COMMANDS = {
    "run": run_command,
    "ingest-file": ingest_file_command,
    "init-db": init_db_command,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the ingestion CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_CRASH

    try:
        return COMMANDS[args.command](args)
    except FatalConfigurationError as e:
        logger.error(f"Fatal configuration error: {e}")
        print(json.dumps({"status": "error", "error_type": "configuration", "error": str(e)}), file=sys.stderr)
        return EXIT_CONFIG
    except Exception as e:
        logger.error(f"Ingestion crashed: {e}", exc_info=True)
        print(json.dumps({"status": "error", "error": str(e)}), file=sys.stderr)
        return EXIT_CRASH


if __name__ == "__main__":
    sys.exit(main())
