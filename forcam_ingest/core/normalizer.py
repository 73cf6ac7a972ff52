"""
Record normalization.

Turns a raw drop-file row or API item into a CycleTimeRecord / ApiRecord,
or a RejectReason. Normalization is pure: bad input is returned as a
rejection, never raised, so the batch loader can count it and move on.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from pydantic import ValidationError as ModelValidationError

from forcam_ingest.core.errors import ValidationError
from forcam_ingest.core.models import (
    ApiRecord,
    CycleTimeRecord,
    NormalizationResult,
    RejectReason,
)
from forcam_ingest.core.validators import (
    BaseValidator,
    RangeValidator,
    RequiredFieldValidator,
    TypeValidator,
)

# Positional layout of the drop-file CSV after its header row
CSV_COLUMNS = (
    "date",
    "time",
    "workplace",
    "ordernumber",
    "operationnumber",
    "materialnumber",
    "te_sap",
)

# Canonical field -> accepted raw names (lower case)
ROW_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date",),
    "time": ("time",),
    "workplace": ("workplace",),
    "order_number": ("ordernumber", "order_number"),
    "operation_number": ("operationnumber", "operation_number"),
    "material_number": ("materialnumber", "material_number"),
    "cycle_seconds": ("te_sap", "cycle_seconds", "cycle_time"),
}

API_ALIASES: dict[str, tuple[str, ...]] = {
    "machine_name": ("machinename", "machine_name", "machine", "machine.name"),
    "material_number": ("materialnumber", "material_number", "material", "material.number"),
    "cycle_time": ("cycletime", "cycle_time", "te_sap"),
    "operation_number": ("operationnumber", "operation_number", "operation", "operation.number"),
    "workplace": ("workplace", "work_place"),
    "order_number": ("ordernumber", "order_number", "order", "order.number"),
    "timestamp": ("timestamp", "eventtime", "event_time", "time"),
}

OPTIONAL_TEXT = ("order_number", "operation_number", "material_number")


def _lookup(raw: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        if name in raw:
            return raw[name]
    return None


def _lowercase_keys(raw: dict[str, Any]) -> dict[str, Any]:
    return {str(k).strip().lower(): v for k, v in raw.items()}


def flatten_item(item: dict[str, Any]) -> dict[str, Any]:
    """Flatten nested objects one level deep using dotted keys."""
    flat: dict[str, Any] = {}
    for key, value in item.items():
        if isinstance(value, dict):
            for inner_key, inner_value in value.items():
                flat[f"{key}.{inner_key}"] = inner_value
        else:
            flat[key] = value
    return flat


class RecordNormalizer:
    """
    Applies trimming, type coercion and rejection rules to raw rows.

    Args:
        round_cycle_time: Quantize cycle times to `decimal_places`
        decimal_places: Places kept when rounding is enabled
    """

    def __init__(self, round_cycle_time: bool = True, decimal_places: int = 6):
        self.round_cycle_time = round_cycle_time
        self.decimal_places = decimal_places
        places = decimal_places if round_cycle_time else None

        self.row_rules: dict[str, list[BaseValidator]] = {
            "date": [RequiredFieldValidator("date"), TypeValidator("date", {"expected_type": "date"})],
            "time": [RequiredFieldValidator("time"), TypeValidator("time", {"expected_type": "time"})],
            "workplace": [
                RequiredFieldValidator("workplace"),
                TypeValidator("workplace", {"expected_type": "string"}),
            ],
            "cycle_seconds": [
                RequiredFieldValidator("cycle_seconds"),
                TypeValidator("cycle_seconds", {"expected_type": "decimal", "round_places": places}),
                RangeValidator("cycle_seconds", {"min": 0}),
            ],
        }
        for name in OPTIONAL_TEXT:
            self.row_rules[name] = [TypeValidator(name, {"expected_type": "string"})]

        self.api_rules: dict[str, list[BaseValidator]] = {
            "machine_name": [
                RequiredFieldValidator("machine_name"),
                TypeValidator("machine_name", {"expected_type": "string"}),
            ],
            "cycle_time": [
                TypeValidator("cycle_time", {"expected_type": "decimal", "round_places": places}),
                RangeValidator("cycle_time", {"min": 0}),
            ],
            "timestamp": [TypeValidator("timestamp", {"expected_type": "timestamp"})],
            "workplace": [TypeValidator("workplace", {"expected_type": "string"})],
        }
        for name in OPTIONAL_TEXT:
            self.api_rules[name] = [TypeValidator(name, {"expected_type": "string"})]

        self._machine_rule = [
            RequiredFieldValidator("machine_name"),
            TypeValidator("machine_name", {"expected_type": "string"}),
        ]

    @staticmethod
    def _apply(rules: list[BaseValidator], value: Any, raw: dict[str, Any]) -> Any:
        for validator in rules:
            value = validator.validate(value, raw)
        return value

    @staticmethod
    def _reject(error: ValidationError, raw: Any) -> NormalizationResult:
        return NormalizationResult(
            reject=RejectReason(field_name=error.field_name, rule=error.rule_name, message=error.message),
            raw=raw if isinstance(raw, dict) else {"value": raw},
        )

    @staticmethod
    def _model_reject(error: ModelValidationError, raw: dict[str, Any]) -> NormalizationResult:
        first = error.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or "record"
        return NormalizationResult(
            reject=RejectReason(field_name=field_name, rule="model", message=first.get("msg", str(error))),
            raw=raw,
        )

    def normalize_row(
        self,
        raw: dict[str, Any],
        machine_name: str,
        source: str,
        batch_id: UUID,
    ) -> NormalizationResult:
        """
        Normalize one drop-file row.

        Args:
            raw: Row keyed by column name (CSV_COLUMNS or canonical names)
            machine_name: Machine the file belongs to
            source: File path
            batch_id: Current batch

        Returns:
            NormalizationResult with a CycleTimeRecord or a RejectReason
        """
        if not isinstance(raw, dict):
            return self._reject(ValidationError("structure", "row", "Row is not an object"), raw)

        lowered = _lowercase_keys(raw)
        values: dict[str, Any] = {}
        try:
            values["machine_name"] = self._apply(self._machine_rule, machine_name, raw)
            for field_name, rules in self.row_rules.items():
                value = _lookup(lowered, ROW_ALIASES[field_name])
                values[field_name] = self._apply(rules, value, raw)
        except ValidationError as e:
            return self._reject(e, raw)

        try:
            record = CycleTimeRecord(source=source, batch_id=batch_id, **values)
        except ModelValidationError as e:
            return self._model_reject(e, raw)
        return NormalizationResult(record=record, raw=raw)

    def normalize_api_item(
        self,
        item: dict[str, Any],
        endpoint: str,
        batch_id: UUID,
    ) -> NormalizationResult:
        """
        Normalize one REST item.

        A missing timestamp stays None; the dedup key then falls back to a
        digest of the item so re-ingesting the same page still collides.

        Args:
            item: Item as returned by the endpoint
            endpoint: Endpoint path it was fetched from
            batch_id: Current batch (one API page)

        Returns:
            NormalizationResult with an ApiRecord or a RejectReason
        """
        if not isinstance(item, dict):
            return self._reject(ValidationError("structure", "item", "Item is not an object"), item)

        lowered = _lowercase_keys(flatten_item(item))
        values: dict[str, Any] = {}
        try:
            for field_name, rules in self.api_rules.items():
                value = _lookup(lowered, API_ALIASES[field_name])
                values[field_name] = self._apply(rules, value, item)
        except ValidationError as e:
            return self._reject(e, item)

        try:
            record = ApiRecord(
                raw_payload=item,
                source_endpoint=endpoint,
                batch_id=batch_id,
                import_timestamp=datetime.now(timezone.utc),
                **values,
            )
        except ModelValidationError as e:
            return self._model_reject(e, item)
        return NormalizationResult(record=record, raw=item)


def row_from_columns(cells: list[str]) -> dict[str, Any]:
    """Map a positional CSV row onto CSV_COLUMNS; missing cells become None."""
    row: dict[str, Any] = dict.fromkeys(CSV_COLUMNS)
    for name, cell in zip(CSV_COLUMNS, cells):
        row[name] = cell
    return row
