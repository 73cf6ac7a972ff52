"""
CycleTimeRecord model representing one normalized cycle observation (ephemeral).
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class CycleTimeRecord(BaseModel):
    """
    One manufacturing cycle observation read from a per-machine drop file.

    Note: CycleTimeRecord only lives between normalization and the store's
    upsert. It is never mutated; a rejection or an upsert takes the full value.

    Attributes:
        machine_name: Machine the drop directory belongs to
        date: Calendar date of the cycle
        time: Time of day, millisecond precision
        workplace: Workplace code (required, trimmed)
        order_number: Production order (optional)
        operation_number: Operation within the order (optional)
        material_number: Material produced (optional)
        cycle_seconds: Cycle duration, non-negative decimal
        source: File path the row came from
        batch_id: ImportBatch that loaded this record
        import_timestamp: When the record was prepared for loading
    """

    machine_name: str = Field(..., min_length=1)
    date: dt.date
    time: dt.time
    workplace: str = Field(..., min_length=1)
    order_number: str | None = None
    operation_number: str | None = None
    material_number: str | None = None
    cycle_seconds: Decimal = Field(..., ge=0)
    source: str
    batch_id: UUID
    import_timestamp: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "machine_name": "MachineX",
                "date": "2025-01-01",
                "time": "08:00:00",
                "workplace": "WP001",
                "order_number": "ORD123",
                "operation_number": "OP456",
                "material_number": "MAT789",
                "cycle_seconds": "45.500000",
                "source": "/data/forcam/MachineX/cycles_20250101.csv",
                "batch_id": "5f0c8a2e-4d1b-4c3a-9a51-8d1e6f2b7c10",
            }
        }
