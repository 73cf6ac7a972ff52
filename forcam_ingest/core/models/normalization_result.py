"""
NormalizationResult model representing the outcome of normalizing one raw row (ephemeral).
"""

from typing import Any

from pydantic import BaseModel, model_validator

from .api_record import ApiRecord
from .cycle_time_record import CycleTimeRecord


class RejectReason(BaseModel):
    """Why a raw row was not turned into a record."""

    field_name: str
    rule: str
    message: str

    def __str__(self) -> str:
        return f"[{self.rule}] {self.field_name}: {self.message}"


class NormalizationResult(BaseModel):
    """
    Either a normalized record or a rejection, never both.

    Attributes:
        record: The normalized record when the row is valid
        reject: The reason the row was rejected
        raw: The raw row, kept for error reporting
    """

    record: CycleTimeRecord | ApiRecord | None = None
    reject: RejectReason | None = None
    raw: dict[str, Any] | None = None

    @model_validator(mode="after")
    def check_exactly_one(self) -> "NormalizationResult":
        if (self.record is None) == (self.reject is None):
            raise ValueError("NormalizationResult needs exactly one of record or reject")
        return self

    @property
    def ok(self) -> bool:
        return self.record is not None
