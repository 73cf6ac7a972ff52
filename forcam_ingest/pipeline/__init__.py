"""
Ingestion engine: retry executor, batch loader, file lifecycle and scheduler.
"""

from .api_ingest import ApiIngestor
from .batch_loader import BatchLoader, BatchSource
from .file_lifecycle import FileLifecycleManager
from .retry import RetryExecutor, RetryOutcome
from .run_context import RunContext
from .scheduler import IngestionScheduler

__all__ = [
    "ApiIngestor",
    "BatchLoader",
    "BatchSource",
    "FileLifecycleManager",
    "IngestionScheduler",
    "RetryExecutor",
    "RetryOutcome",
    "RunContext",
]
