"""
Field rule contract used by the record normalizer.

A rule looks at one field of a raw row. It returns the value to carry
forward, trimmed or coerced, or raises ValidationError naming itself and
the field.
"""

from abc import ABC, abstractmethod
from typing import Any

from forcam_ingest.core.errors import ValidationError


class BaseValidator(ABC):
    """One named rule bound to one field, configured by a parameter dict."""

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        self.field_name = field_name
        self.parameters = parameters or {}

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Short identifier reported in rejection reasons."""

    @abstractmethod
    def validate(self, value: Any, record: dict[str, Any]) -> Any:
        """
        Check value, taken from record, against this rule.

        Returns:
            The value the next rule (or the record) should see

        Raises:
            ValidationError: the value is not acceptable
        """

    def fail(self, message: str) -> ValidationError:
        return ValidationError(rule_name=self.rule_type, field_name=self.field_name, message=message)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.rule_type} on {self.field_name} {self.parameters}>"


__all__ = ["BaseValidator", "ValidationError"]
