"""
ApiRecord model representing one flattened event from the REST source.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class ApiRecord(BaseModel):
    """
    A flattened manufacturing event pulled from a REST endpoint.

    Keyed on (machine_name, timestamp, source_endpoint) because API items
    do not reliably carry the drop-file key fields. An item without a
    timestamp is keyed on a digest of its payload instead.

    Attributes:
        machine_name: Machine that produced the event (required)
        material_number: Material produced
        cycle_time: Cycle duration in seconds, non-negative when present
        operation_number: Operation within the order
        workplace: Workplace code
        order_number: Production order
        timestamp: Event time (UTC); None when the item carries none
        raw_payload: Original item, kept for audit
        source_endpoint: Endpoint the item was fetched from
        batch_id: ImportBatch (one API page) that loaded this record
        import_timestamp: When the record was prepared for loading
    """

    machine_name: str = Field(..., min_length=1)
    material_number: str | None = None
    cycle_time: Decimal | None = Field(None, ge=0)
    operation_number: str | None = None
    workplace: str | None = None
    order_number: str | None = None
    timestamp: datetime | None = None
    raw_payload: dict[str, Any]
    source_endpoint: str
    batch_id: UUID
    import_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "machine_name": "MachineX",
                "material_number": "MAT789",
                "cycle_time": "45.500000",
                "operation_number": "OP456",
                "workplace": "WP001",
                "order_number": "ORD123",
                "timestamp": "2025-01-01T08:00:00Z",
                "raw_payload": {"machineName": "MachineX", "cycleTime": 45.5},
                "source_endpoint": "/api/v1/cycles",
                "batch_id": "5f0c8a2e-4d1b-4c3a-9a51-8d1e6f2b7c10",
            }
        }
