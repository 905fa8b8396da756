"""
Table metadata for the reconciliation store.

``local_entities`` holds one row per (source_id, url). The unique constraint is
what makes concurrent find-or-create safe: racing inserts for the same key
collapse into one row.
"""

from sqlalchemy import (
    Boolean,
    Column,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from utils.logger import get_logger

logger = get_logger(__name__)

metadata = MetaData()

local_entities = Table(
    "local_entities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("source_id", String(64), nullable=False),
    Column("url", String(2048), nullable=False),
    Column("title", Text, nullable=False, default=""),
    Column("thumbnail_url", Text, nullable=True),
    Column("author", Text, nullable=True),
    Column("description", Text, nullable=True),
    Column("genre", Text, nullable=True),
    Column("status", String(64), nullable=True),
    Column("initialized", Boolean, nullable=False, default=False),
    UniqueConstraint("source_id", "url", name="uq_local_entities_source_url"),
)


def create_schema(engine: Engine) -> None:
    """Create missing tables (existing tables are left untouched)."""
    metadata.create_all(engine)
    logger.info(
        "Schema ensured",
        extra={
            "extra_fields": {
                "tables": sorted(metadata.tables),
                "dialect": engine.dialect.name,
            }
        },
    )
