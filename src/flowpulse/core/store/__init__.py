"""
Record store for flowpulse.

Provides the SQLite schema, the explicit store handle, the batch writer and
the read queries for issues, projects, engineers, initiatives, sync metadata
and metrics snapshots.

Main components:
- schema.py: ordered migrations and schema validation
- connection.py: the Store handle and transaction management
- models.py: pydantic records and enums
- writer.py: transactional upserts and deletes
- queries.py: typed read helpers

Usage:
    from flowpulse.core.store import RecordWriter, Store

    with Store(db_path) as store:
        RecordWriter(store).upsert_issues(issues)
"""

from flowpulse.core.store.connection import Store
from flowpulse.core.store.schema import SCHEMA_VERSION, SchemaCheck, validate_schema
from flowpulse.core.store.writer import RecordWriter, WriteResult

__all__ = [
    "Store",
    "RecordWriter",
    "WriteResult",
    "SchemaCheck",
    "validate_schema",
    "SCHEMA_VERSION",
]
