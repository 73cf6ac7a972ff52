"""
Dedup key derivation.

The key identifies one logical observation for the store's upsert. It is
built from normalized values only, so two ingestions of the same source row
always collide instead of duplicating. Text parts are trimmed but keep their
case: MAT789 and mat789 are different materials to the store.
"""

import hashlib
import json
from datetime import date, datetime, time, timezone
from typing import NamedTuple

from forcam_ingest.core.models import ApiRecord, CycleTimeRecord


class CycleTimeKey(NamedTuple):
    machine_name: str
    date: str
    time: str
    material_number: str | None
    operation_number: str | None


class ApiRecordKey(NamedTuple):
    machine_name: str
    timestamp: str | None
    source_endpoint: str
    payload_digest: str | None = None


def _text(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _date(value: date) -> str:
    return value.isoformat()


def _time(value: time) -> str:
    # Milliseconds only when present, so "08:00:00" stays "08:00:00"
    if value.microsecond:
        return value.isoformat(timespec="milliseconds")
    return value.isoformat(timespec="seconds")


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def payload_digest(payload: dict) -> str:
    """SHA-256 of the payload as canonical JSON (sorted keys, no whitespace)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def cycle_time_key(record: CycleTimeRecord) -> CycleTimeKey:
    """Key for drop-file records: (machine, date, time, material, operation)."""
    return CycleTimeKey(
        machine_name=_text(record.machine_name) or "",
        date=_date(record.date),
        time=_time(record.time),
        material_number=_text(record.material_number),
        operation_number=_text(record.operation_number),
    )


def api_record_key(record: ApiRecord) -> ApiRecordKey:
    """
    Key for API records: (machine, timestamp, endpoint).

    Items without a timestamp carry a payload digest in its place, so the
    same item fetched again maps to the same row.
    """
    if record.timestamp is None:
        timestamp, digest = None, payload_digest(record.raw_payload)
    else:
        timestamp, digest = _timestamp(record.timestamp), None
    return ApiRecordKey(
        machine_name=_text(record.machine_name) or "",
        timestamp=timestamp,
        source_endpoint=_text(record.source_endpoint) or "",
        payload_digest=digest,
    )


def dedup_key(record: CycleTimeRecord | ApiRecord) -> CycleTimeKey | ApiRecordKey:
    if isinstance(record, CycleTimeRecord):
        return cycle_time_key(record)
    return api_record_key(record)


def format_key(key: tuple) -> str:
    """Render a key the way it appears in logs, e.g. (MachineX,2025-01-01,08:00:00,MAT789,OP456)."""
    return "(" + ",".join("" if part is None else str(part) for part in key) + ")"
