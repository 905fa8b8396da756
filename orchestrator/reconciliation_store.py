"""
Reconciliation store: idempotent mapping from provider records to local entities.

The contract (``ReconciliationStore``) is consumed by the fan-out and
enrichment stages. Implementations must guarantee per-key atomicity of
``find_or_create`` and ``upsert_details`` on their own, since both are invoked
concurrently from worker threads.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from db.repository import find_or_create_entity, get_entity, upsert_entity_details
from db.session import make_session_factory
from db.tables import create_schema
from models.errors import ReconciliationError
from models.search_models import LocalEntity, SearchRecord
from utils.logger import get_logger

logger = get_logger(__name__)


class ReconciliationStore(ABC):
    """Find-or-create contract keyed by (source_id, url)."""

    @abstractmethod
    def find_or_create(self, source_id: str, url: str, record: SearchRecord) -> LocalEntity:
        """
        Return the entity for the key, creating it from ``record`` if absent.

        Existing entities are returned unmodified.

        Raises:
            ReconciliationError: If the store cannot create or read the entity
        """

    @abstractmethod
    def upsert_details(self, entity: LocalEntity) -> LocalEntity:
        """
        Persist enriched fields of ``entity``; idempotent.

        Raises:
            ReconciliationError: If the store cannot write the entity
        """

    @abstractmethod
    def get(self, source_id: str, url: str) -> LocalEntity | None:
        """Look up an entity without creating it."""


class InMemoryReconciliationStore(ReconciliationStore):
    """
    Thread-safe in-memory store.

    A single lock serializes every operation, which trivially gives per-key
    atomicity. Useful for tests and for callers without a database.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entities: dict[tuple[str, str], LocalEntity] = {}
        self._next_id = 1
        self.created_count = 0

    def find_or_create(self, source_id: str, url: str, record: SearchRecord) -> LocalEntity:
        key = (source_id, url)
        with self._lock:
            existing = self._entities.get(key)
            if existing is not None:
                return existing
            entity = LocalEntity.from_record(source_id, record, entity_id=self._next_id)
            self._next_id += 1
            self._entities[key] = entity
            self.created_count += 1
            return entity

    def upsert_details(self, entity: LocalEntity) -> LocalEntity:
        with self._lock:
            existing = self._entities.get(entity.key)
            if existing is None and entity.id is None:
                entity = replace(entity, id=self._next_id)
                self._next_id += 1
            elif existing is not None and existing.id != entity.id:
                entity = replace(entity, id=existing.id)
            self._entities[entity.key] = entity
            return entity

    def get(self, source_id: str, url: str) -> LocalEntity | None:
        with self._lock:
            return self._entities.get((source_id, url))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)


class SqlReconciliationStore(ReconciliationStore):
    """
    SQLAlchemy-backed store.

    Each operation runs in its own short session and transaction, so it can be
    called from any thread. SQLAlchemy errors are translated into
    ``ReconciliationError``.
    """

    def __init__(self, engine: Engine, create_tables: bool = True):
        """
        Args:
            engine: SQLAlchemy engine
            create_tables: Create the ``local_entities`` table if missing
        """
        self.engine = engine
        self._session_factory = make_session_factory(engine)
        if create_tables:
            create_schema(engine)

    def find_or_create(self, source_id: str, url: str, record: SearchRecord) -> LocalEntity:
        try:
            with self._session_factory() as db:
                entity, created = find_or_create_entity(db, source_id, url, record)
                db.commit()
                return entity
        except (SQLAlchemyError, LookupError) as e:
            logger.error(
                f"find_or_create failed for {source_id}/{url}: {e}",
                extra={
                    "extra_fields": {
                        "source_id": source_id,
                        "url": url,
                        "error_type": type(e).__name__,
                    }
                },
            )
            raise ReconciliationError(
                f"Could not reconcile {source_id}/{url}: {e}", source_id=source_id, url=url
            ) from e

    def upsert_details(self, entity: LocalEntity) -> LocalEntity:
        try:
            with self._session_factory() as db:
                stored = upsert_entity_details(db, entity)
                db.commit()
                return stored
        except (SQLAlchemyError, LookupError) as e:
            raise ReconciliationError(
                f"Could not persist details for {entity.source_id}/{entity.url}: {e}",
                source_id=entity.source_id,
                url=entity.url,
            ) from e

    def get(self, source_id: str, url: str) -> LocalEntity | None:
        try:
            with self._session_factory() as db:
                return get_entity(db, source_id, url)
        except SQLAlchemyError as e:
            raise ReconciliationError(
                f"Could not read {source_id}/{url}: {e}", source_id=source_id, url=url
            ) from e
