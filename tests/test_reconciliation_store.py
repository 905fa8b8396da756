"""
Tests for the reconciliation store contract (in-memory and SQL implementations).
"""

import concurrent.futures

import pytest
from sqlalchemy import inspect

from db.engine import create_db_engine
from db.repository import count_entities
from db.session import get_db
from db.tables import create_schema
from models.errors import ReconciliationError
from models.search_models import SearchRecord
from orchestrator.reconciliation_store import (
    InMemoryReconciliationStore,
    SqlReconciliationStore,
)


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'store.db'}")
    yield engine
    engine.dispose()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, sqlite_engine):
    if request.param == "memory":
        return InMemoryReconciliationStore()
    return SqlReconciliationStore(sqlite_engine)


def hammer(store, workers: int = 8, calls: int = 32):
    """Call find_or_create for the same key from many threads at once."""
    records = [SearchRecord(url="/same", title=f"title {i}") for i in range(calls)]
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(store.find_or_create, "src", "/same", record) for record in records]
        return [future.result() for future in futures]


class TestFindOrCreate:
    def test_creates_from_record(self, any_store):
        record = SearchRecord(url="/a", title="A", thumbnail_url="img", author="Au")

        entity = any_store.find_or_create("src", "/a", record)

        assert entity.id is not None
        assert entity.key == ("src", "/a")
        assert entity.title == "A"
        assert entity.thumbnail_url == "img"
        assert entity.author == "Au"
        assert not entity.initialized

    def test_existing_entity_returned_unmodified(self, any_store):
        first = any_store.find_or_create("src", "/a", SearchRecord(url="/a", title="Original"))

        second = any_store.find_or_create(
            "src", "/a", SearchRecord(url="/a", title="Renamed", thumbnail_url="new")
        )

        assert second == first
        assert second.title == "Original"
        assert second.thumbnail_url is None

    def test_key_includes_source(self, any_store):
        one = any_store.find_or_create("s1", "/a", SearchRecord(url="/a", title="A"))
        two = any_store.find_or_create("s2", "/a", SearchRecord(url="/a", title="A"))

        assert one.id != two.id

    def test_concurrent_same_key_creates_once(self, any_store):
        results = hammer(any_store)

        assert len({entity.id for entity in results}) == 1
        assert len({entity.title for entity in results}) == 1

    def test_get_missing_returns_none(self, any_store):
        assert any_store.get("src", "/missing") is None


class TestUpsertDetails:
    def test_persists_enriched_fields(self, any_store):
        entity = any_store.find_or_create("src", "/a", SearchRecord(url="/a", title="A"))

        stored = any_store.upsert_details(entity.with_details({"thumbnail_url": "img", "genre": "G"}))

        assert stored.id == entity.id
        assert stored.thumbnail_url == "img"
        assert stored.genre == "G"
        assert stored.initialized
        assert any_store.get("src", "/a") == stored

    def test_idempotent(self, any_store):
        entity = any_store.find_or_create("src", "/a", SearchRecord(url="/a", title="A"))
        enriched = entity.with_details({"description": "D"})

        first = any_store.upsert_details(enriched)
        second = any_store.upsert_details(enriched)

        assert first == second


class TestSqlStore:
    def test_concurrent_same_key_single_row(self, sqlite_engine):
        store = SqlReconciliationStore(sqlite_engine)

        hammer(store)

        db = next(get_db(sqlite_engine))
        try:
            assert count_entities(db) == 1
            assert count_entities(db, source_id="src") == 1
        finally:
            db.close()

    def test_storage_failure_raises_reconciliation_error(self, sqlite_engine):
        # Schema never created: every statement fails
        store = SqlReconciliationStore(sqlite_engine, create_tables=False)

        with pytest.raises(ReconciliationError) as exc_info:
            store.find_or_create("src", "/a", SearchRecord(url="/a", title="A"))

        assert exc_info.value.source_id == "src"
        assert exc_info.value.url == "/a"

    def test_get_failure_raises_reconciliation_error(self, sqlite_engine):
        store = SqlReconciliationStore(sqlite_engine, create_tables=False)

        with pytest.raises(ReconciliationError):
            store.get("src", "/a")


class TestInMemoryStore:
    def test_created_count_under_concurrency(self):
        store = InMemoryReconciliationStore()

        hammer(store)

        assert store.created_count == 1
        assert len(store) == 1


class TestSchemaAndEngine:
    def test_create_schema_is_idempotent(self, sqlite_engine):
        create_schema(sqlite_engine)
        create_schema(sqlite_engine)

        assert inspect(sqlite_engine).get_table_names() == ["local_entities"]

    def test_engine_uses_database_url_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")

        engine = create_db_engine()
        try:
            assert engine.url.database == str(tmp_path / "env.db")
        finally:
            engine.dispose()
