"""
RequiredFieldValidator - ensures a field is present and not null/blank.
"""

from typing import Any

from .base_validator import BaseValidator


class RequiredFieldValidator(BaseValidator):
    """
    Validates that a required field is present and not null/blank.

    Fails if:
    - Field value is None (missing keys are looked up as None)
    - Field value is a blank string after trimming

    Strings are returned trimmed.
    """

    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        if value is None:
            raise self.fail("Field is missing or null")

        if isinstance(value, str):
            value = value.strip()
            if value == "":
                raise self.fail("Field value is empty string")

        return value

    @property
    def rule_type(self) -> str:
        return "required_field"
