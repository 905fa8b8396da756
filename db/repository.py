"""
Repository layer for reconciliation store operations.
All functions use SQLAlchemy Core against the ``local_entities`` table.

Design principles:
- Functions do NOT commit - caller commits for transaction control
- Raise SQLAlchemy exceptions on errors; translation happens in the store
- Per-key atomicity comes from the (source_id, url) unique constraint
"""

from typing import Any

from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert  # For UPSERT
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.tables import local_entities
from models.search_models import DETAIL_FIELDS, LocalEntity, SearchRecord
from utils.logger import get_logger

logger = get_logger(__name__)

_KEY_COLUMNS = ["source_id", "url"]
_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def _row_to_entity(row: Any) -> LocalEntity:
    return LocalEntity(
        id=row["id"],
        source_id=row["source_id"],
        url=row["url"],
        title=row["title"],
        thumbnail_url=row["thumbnail_url"],
        author=row["author"],
        description=row["description"],
        genre=row["genre"],
        status=row["status"],
        initialized=bool(row["initialized"]),
    )


def _key_clause(source_id: str, url: str):
    return and_(local_entities.c.source_id == source_id, local_entities.c.url == url)


def _dialect_insert(db: Session):
    return _UPSERT_DIALECTS.get(db.get_bind().dialect.name)


# ============================================================================
# LOOKUPS
# ============================================================================


def get_entity(db: Session, source_id: str, url: str) -> LocalEntity | None:
    """
    Get the local entity for (source_id, url).

    Returns:
        LocalEntity or None if the key has never been seen
    """
    stmt = select(local_entities).where(_key_clause(source_id, url))
    row = db.execute(stmt).mappings().one_or_none()
    return _row_to_entity(row) if row is not None else None


def count_entities(db: Session, source_id: str | None = None) -> int:
    """Count stored entities, optionally restricted to one source."""
    stmt = select(func.count()).select_from(local_entities)
    if source_id is not None:
        stmt = stmt.where(local_entities.c.source_id == source_id)
    return db.execute(stmt).scalar_one()


# ============================================================================
# FIND-OR-CREATE
# ============================================================================


def find_or_create_entity(
    db: Session, source_id: str, url: str, record: SearchRecord
) -> tuple[LocalEntity, bool]:
    """
    Return the entity for (source_id, url), creating it from ``record`` if absent.

    An existing row is returned unmodified: find-or-create never refreshes
    metadata. Concurrent callers with the same key race on the unique
    constraint; the loser's insert is a no-op and it reads the winner's row.

    Args:
        db: Database session
        source_id: Owning source id
        url: Source-scoped identifier
        record: Provider record used for the initial field values

    Returns:
        tuple: (LocalEntity, created flag)

    Note:
        Does NOT commit. Caller must commit.
    """
    values = {
        "source_id": source_id,
        "url": url,
        "title": record.title or "",
        "initialized": False,
    }
    for name in DETAIL_FIELDS:
        values[name] = getattr(record, name)

    dialect_insert = _dialect_insert(db)
    if dialect_insert is not None:
        stmt = dialect_insert(local_entities).values(**values).on_conflict_do_nothing(
            index_elements=_KEY_COLUMNS
        )
        created = db.execute(stmt).rowcount == 1
    else:
        try:
            with db.begin_nested():
                db.execute(insert(local_entities).values(**values))
            created = True
        except IntegrityError:
            created = False

    entity = get_entity(db, source_id, url)
    if entity is None:
        # Unreachable unless the row was deleted between insert and select
        raise LookupError(f"Entity {source_id}/{url} vanished after insert")

    if created:
        logger.debug(
            "Created local entity",
            extra={"extra_fields": {"source_id": source_id, "url": url, "entity_id": entity.id}},
        )
    return entity, created


# ============================================================================
# ENRICHMENT UPSERT
# ============================================================================


def upsert_entity_details(db: Session, entity: LocalEntity) -> LocalEntity:
    """
    Persist the detail fields of ``entity`` (insert if the key is missing).

    Idempotent: writing the same entity twice leaves the same row.

    Note:
        Does NOT commit. Caller must commit.
    """
    details = entity.detail_values()
    dialect_insert = _dialect_insert(db)

    if dialect_insert is not None:
        stmt = dialect_insert(local_entities).values(
            source_id=entity.source_id, url=entity.url, **details
        )
        stmt = stmt.on_conflict_do_update(index_elements=_KEY_COLUMNS, set_=details)
        db.execute(stmt)
    else:
        result = db.execute(
            update(local_entities)
            .where(_key_clause(entity.source_id, entity.url))
            .values(**details)
        )
        if result.rowcount == 0:
            db.execute(
                insert(local_entities).values(
                    source_id=entity.source_id, url=entity.url, **details
                )
            )

    stored = get_entity(db, entity.source_id, entity.url)
    if stored is None:
        raise LookupError(f"Entity {entity.source_id}/{entity.url} missing after upsert")
    return stored
