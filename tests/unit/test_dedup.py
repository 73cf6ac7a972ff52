"""
Unit tests for dedup key derivation.
"""

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from forcam_ingest.core.dedup import (
    ApiRecordKey,
    CycleTimeKey,
    api_record_key,
    cycle_time_key,
    dedup_key,
    format_key,
    payload_digest,
)
from forcam_ingest.core.models import ApiRecord, CycleTimeRecord


def make_cycle(**overrides):
    values = dict(
        machine_name="MachineX",
        date=date(2025, 1, 1),
        time=time(8, 0, 0),
        workplace="WP001",
        operation_number="OP456",
        material_number="MAT789",
        cycle_seconds=Decimal("45.5"),
        source="/data/MachineX/a.csv",
        batch_id=uuid4(),
    )
    values.update(overrides)
    return CycleTimeRecord(**values)


def make_api(**overrides):
    values = dict(
        machine_name="MachineX",
        timestamp=datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc),
        raw_payload={},
        source_endpoint="/api/v1/cycles",
        batch_id=uuid4(),
    )
    values.update(overrides)
    return ApiRecord(**values)


class TestCycleTimeKey:
    """Keys for drop-file records"""

    def test_key_fields(self):
        key = cycle_time_key(make_cycle())
        assert key == CycleTimeKey("MachineX", "2025-01-01", "08:00:00", "MAT789", "OP456")

    def test_same_row_from_different_batches_collides(self):
        """Batch, source and cycle time do not take part in the key"""
        first = make_cycle(cycle_seconds=Decimal("1"), source="a.csv")
        second = make_cycle(cycle_seconds=Decimal("2"), source="b.csv")
        assert dedup_key(first) == dedup_key(second)

    def test_workplace_and_order_are_not_key_fields(self):
        assert cycle_time_key(make_cycle(workplace="WP1", order_number="A")) == \
            cycle_time_key(make_cycle(workplace="WP2", order_number="B"))

    def test_missing_optional_parts_are_none(self):
        key = cycle_time_key(make_cycle(material_number=None, operation_number="  "))
        assert key.material_number is None
        assert key.operation_number is None

    def test_case_is_preserved(self):
        assert cycle_time_key(make_cycle(material_number="mat789")) != cycle_time_key(make_cycle())

    def test_milliseconds_only_when_present(self):
        assert cycle_time_key(make_cycle(time=time(8, 0, 0, 250000))).time == "08:00:00.250"


class TestApiRecordKey:
    """Keys for API records"""

    def test_key_fields(self):
        key = api_record_key(make_api())
        assert key == ApiRecordKey("MachineX", "2025-01-01T08:00:00.000+00:00", "/api/v1/cycles")

    def test_equal_instants_in_other_offsets_collide(self):
        other = datetime(2025, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=1)))
        assert dedup_key(make_api(timestamp=other)) == dedup_key(make_api())

    def test_endpoint_is_part_of_key(self):
        assert api_record_key(make_api(source_endpoint="/a")) != api_record_key(make_api(source_endpoint="/b"))

    def test_timestamped_item_has_no_digest(self):
        assert api_record_key(make_api(raw_payload={"a": 1})).payload_digest is None

    def test_item_without_timestamp_is_keyed_on_its_payload(self):
        """The same item fetched twice keeps its key; a different item does not share it"""
        first = make_api(timestamp=None, raw_payload={"machineName": "MachineX", "cycleTime": 45.5})
        again = make_api(timestamp=None, raw_payload={"cycleTime": 45.5, "machineName": "MachineX"})
        other = make_api(timestamp=None, raw_payload={"machineName": "MachineX", "cycleTime": 46})

        assert api_record_key(first) == api_record_key(again)
        assert api_record_key(first).timestamp is None
        assert api_record_key(first).payload_digest == payload_digest(first.raw_payload)
        assert api_record_key(first) != api_record_key(other)


def test_payload_digest_ignores_key_order():
    assert payload_digest({"a": 1, "b": [1, 2]}) == payload_digest({"b": [1, 2], "a": 1})
    assert len(payload_digest({})) == 64


def test_format_key_renders_none_as_empty():
    assert format_key(CycleTimeKey("MachineX", "2025-01-01", "08:00:00", "MAT789", "OP456")) == \
        "(MachineX,2025-01-01,08:00:00,MAT789,OP456)"
    assert format_key(CycleTimeKey("M", "2025-01-01", "08:00:00", None, None)) == "(M,2025-01-01,08:00:00,,)"
