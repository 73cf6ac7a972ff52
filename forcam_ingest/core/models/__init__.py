"""
Core data models for the cycle-time ingestion pipeline.

All models use Pydantic for runtime validation and type safety.
"""

from .api_record import ApiRecord
from .cycle_time_record import CycleTimeRecord
from .file_task import FileState, FileTask
from .import_batch import BatchStatus, ImportBatch, ImportType
from .normalization_result import NormalizationResult, RejectReason
from .run_summary import RunSummary, SourceTally
from .upsert_outcome import UpsertOutcome

__all__ = [
    "ApiRecord",
    "BatchStatus",
    "CycleTimeRecord",
    "FileState",
    "FileTask",
    "ImportBatch",
    "ImportType",
    "NormalizationResult",
    "RejectReason",
    "RunSummary",
    "SourceTally",
    "UpsertOutcome",
]
