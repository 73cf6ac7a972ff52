"""
Inclusive numeric bounds, applied after type coercion.
"""

from decimal import Decimal
from typing import Any

from .base_validator import BaseValidator


class RangeValidator(BaseValidator):
    """
    Keeps a coerced number inside [min, max]; either bound may be omitted.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.lower = self.parameters.get("min")
        self.upper = self.parameters.get("max")
        if self.lower is None and self.upper is None:
            raise ValueError(f"Range rule on {field_name} needs a min or a max")

    @property
    def rule_type(self) -> str:
        return "range"

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | float | Decimal):
            raise self.fail(f"Expected a number, got {type(value).__name__}")
        if self.lower is not None and value < self.lower:
            raise self.fail(f"{value} is less than minimum {self.lower}")
        if self.upper is not None and value > self.upper:
            raise self.fail(f"{value} exceeds maximum {self.upper}")
        return value
