"""
PostgreSQL store: connection pool, idempotent upserts and DDL.
"""

from .connection import DatabaseConnectionPool
from .schema_mgmt import ensure_schema
from .store import CycleTimeStore, UnitOfWork, UpsertOutcome

__all__ = [
    "CycleTimeStore",
    "DatabaseConnectionPool",
    "UnitOfWork",
    "UpsertOutcome",
    "ensure_schema",
]
