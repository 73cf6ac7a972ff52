"""
RunSummary model representing a point-in-time snapshot of one ingestion run.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class SourceTally(BaseModel):
    """Success/failure counts for one machine or endpoint."""

    succeeded: int = 0
    failed: int = 0


class RunSummary(BaseModel):
    """
    Queryable status report of a run.

    Attributes:
        started_at: Run start (UTC)
        uptime_seconds: Seconds since start at snapshot time
        stopping: A stop has been requested
        counters: Raw counters (files_archived, records_inserted, ...)
        success_rate: Inserted+updated over processed records, in percent
        sources: Per machine / endpoint tallies
    """

    started_at: datetime
    uptime_seconds: float = Field(..., ge=0)
    stopping: bool = False
    counters: dict[str, int] = Field(default_factory=dict)
    success_rate: float = Field(0.0, ge=0.0, le=100.0)
    sources: dict[str, SourceTally] = Field(default_factory=dict)

    def count(self, name: str) -> int:
        return self.counters.get(name, 0)

    class Config:
        json_schema_extra = {
            "example": {
                "started_at": "2025-01-01T06:00:00Z",
                "uptime_seconds": 3600.0,
                "stopping": False,
                "counters": {
                    "files_archived": 42,
                    "files_quarantined": 1,
                    "api_pages_ok": 12,
                    "records_processed": 5120,
                    "records_inserted": 5000,
                    "records_updated": 100,
                    "records_skipped": 20,
                },
                "success_rate": 99.61,
                "sources": {"MachineX": {"succeeded": 42, "failed": 1}},
            }
        }
