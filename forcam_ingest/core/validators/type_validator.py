"""
TypeValidator - coerces raw field values into their canonical types.
"""

import math
import re
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .base_validator import BaseValidator

DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%Y/%m/%d")

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2})(?:[.,](\d+))?)?$")


def to_decimal(value: Any, places: int | None = None) -> Decimal:
    """
    Convert a raw numeric value to Decimal.

    Floats go through repr() so a 32-bit REAL read from JSON keeps its
    shortest decimal form instead of its binary expansion.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"non-finite number {value!r}")
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty string")
        try:
            result = Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"'{text}' is not a number") from e
    else:
        raise ValueError(f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"non-finite number {value!r}")

    if places is not None:
        result = result.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return result


def to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported type {type(value).__name__}")

    text = value.strip()
    # Tolerate a trailing time component ("2025-01-01T00:00:00", "2025-01-01 00:00:00")
    text = re.split(r"[T ]", text, maxsplit=1)[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"'{value}' is not a recognised date")


def to_time(value: Any) -> time:
    """Parse a time of day, truncating to millisecond precision."""
    if isinstance(value, datetime):
        value = value.time()
    if isinstance(value, time):
        return value.replace(microsecond=(value.microsecond // 1000) * 1000, tzinfo=None)
    if not isinstance(value, str):
        raise ValueError(f"unsupported type {type(value).__name__}")

    match = _TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"'{value}' is not a recognised time")

    hours, minutes, seconds, fraction = match.groups()
    millis = int((fraction or "0")[:3].ljust(3, "0"))
    return time(int(hours), int(minutes), int(seconds or 0), millis * 1000)


def to_timestamp(value: Any) -> datetime:
    """Parse an instant; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds are common in REST payloads
        seconds = value / 1000 if value > 1e11 else value
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"'{value}' is not a recognised timestamp") from e
    else:
        raise ValueError(f"unsupported type {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=(parsed.microsecond // 1000) * 1000)


class TypeValidator(BaseValidator):
    """
    Validates that a field can be coerced to the expected type.

    Returns the coerced value. None passes through (handled by
    RequiredFieldValidator).

    Supported types: decimal, date, time, timestamp, string
    Parameters:
    - expected_type: one of the supported types
    - round_places: decimal places for decimal values (None keeps precision)
    """

    COERCERS = {
        "date": to_date,
        "time": to_time,
        "timestamp": to_timestamp,
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("TypeValidator requires 'expected_type' parameter")
        expected_type = expected_type.lower()
        if expected_type not in ("decimal", "string", *self.COERCERS):
            raise ValueError(f"Unsupported type: {expected_type}")

        self.expected_type = expected_type
        self.round_places = self.parameters.get("round_places")

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if value is None:
            return None

        try:
            if self.expected_type == "decimal":
                return to_decimal(value, self.round_places)
            if self.expected_type == "string":
                text = str(value).strip()
                return text or None
            return self.COERCERS[self.expected_type](value)
        except (ValueError, TypeError, OverflowError, OSError) as e:
            raise self.fail(f"Cannot coerce {type(value).__name__} to {self.expected_type}: {e}") from e

    @property
    def rule_type(self) -> str:
        return "type_check"
