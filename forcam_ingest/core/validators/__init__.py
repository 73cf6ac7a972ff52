"""
Field validators used by the record normalizer.

Provides validators for required fields, type coercion and numeric ranges.
"""

from .base_validator import BaseValidator, ValidationError
from .range_validator import RangeValidator
from .required_field_validator import RequiredFieldValidator
from .type_validator import TypeValidator, to_date, to_decimal, to_time, to_timestamp

__all__ = [
    "BaseValidator",
    "ValidationError",
    "RequiredFieldValidator",
    "TypeValidator",
    "RangeValidator",
    "to_date",
    "to_decimal",
    "to_time",
    "to_timestamp",
]
