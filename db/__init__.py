"""
Database package for the reconciliation store.
Provides SQLAlchemy engine, session management, table metadata and repository functions.
"""

from db.engine import create_db_engine, get_engine
from db.repository import (
    count_entities,
    find_or_create_entity,
    get_entity,
    upsert_entity_details,
)
from db.session import get_db, make_session_factory
from db.tables import create_schema, local_entities, metadata

__all__ = [
    "count_entities",
    "create_db_engine",
    "create_schema",
    "find_or_create_entity",
    "get_db",
    "get_engine",
    "get_entity",
    "local_entities",
    "make_session_factory",
    "metadata",
    "upsert_entity_details",
]
