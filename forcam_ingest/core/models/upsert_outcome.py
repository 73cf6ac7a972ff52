"""
Result of one store upsert.
"""

from enum import Enum


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
