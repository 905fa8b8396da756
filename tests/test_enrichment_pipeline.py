"""
Tests for EnrichmentPipeline: sequential hydration, skipping, failure isolation.
"""

import asyncio

from conftest import FakeSource

from models.search_models import EnrichmentTask, LocalEntity, SearchRecord
from orchestrator.enrichment_pipeline import EnrichmentPipeline, detail_mapping


def reconcile(store, source_id: str, count: int, thumbnails: bool = False) -> tuple[LocalEntity, ...]:
    return tuple(
        store.find_or_create(
            source_id,
            f"/{source_id}/{i}",
            SearchRecord(
                url=f"/{source_id}/{i}",
                title=f"T{i}",
                thumbnail_url="img" if thumbnails else None,
            ),
        )
        for i in range(count)
    )


def run_pipeline(store, sources, tasks, generation: int = 1):
    updates = []

    async def scenario():
        pipeline = EnrichmentPipeline(
            store,
            {source.source_id: source for source in sources},
            on_update=lambda source, entity: updates.append((source, entity)),
            generation=generation,
        )
        pipeline.start()
        for task in tasks:
            assert pipeline.offer(task)
        await pipeline.join()
        await pipeline.stop()
        return pipeline

    pipeline = asyncio.run(scenario())
    return pipeline, updates


class TestHydration:
    def test_missing_thumbnail_is_fetched_and_persisted(self, store):
        source = FakeSource("a", details={"thumbnail_url": "cover", "author": "Au"})
        entities = reconcile(store, "a", 2)
        task = EnrichmentTask(source=source.source, entities=entities, generation=1)

        pipeline, updates = run_pipeline(store, [source], [task])

        assert [entity.url for _, entity in updates] == ["/a/0", "/a/1"]
        assert all(src.id == "a" for src, _ in updates)
        stored = store.get("a", "/a/0")
        assert stored.thumbnail_url == "cover"
        assert stored.author == "Au"
        assert stored.initialized
        assert pipeline.enriched_count == 2

    def test_populated_entities_skipped(self, store):
        source = FakeSource("a")
        entities = reconcile(store, "a", 3, thumbnails=True)
        task = EnrichmentTask(source=source.source, entities=entities, generation=1)

        pipeline, updates = run_pipeline(store, [source], [task])

        assert updates == []
        assert source.detail_calls == []
        assert pipeline.skipped_count == 3

    def test_batches_processed_sequentially_in_offer_order(self, store):
        first = FakeSource("a")
        second = FakeSource("b")
        tasks = [
            EnrichmentTask(source=first.source, entities=reconcile(store, "a", 2), generation=1),
            EnrichmentTask(source=second.source, entities=reconcile(store, "b", 2), generation=1),
        ]

        _, updates = run_pipeline(store, [first, second], tasks)

        assert [entity.url for _, entity in updates] == ["/a/0", "/a/1", "/b/0", "/b/1"]


class TestFailureIsolation:
    def test_detail_failure_leaves_entity_untouched(self, store):
        source = FakeSource("a", detail_error=True)
        entities = reconcile(store, "a", 1)
        before = store.get("a", "/a/0")
        task = EnrichmentTask(source=source.source, entities=entities, generation=1)

        pipeline, updates = run_pipeline(store, [source], [task])

        assert updates == []
        assert store.get("a", "/a/0") == before
        assert pipeline.failed_count == 1
        # no retry
        assert source.detail_calls == ["/a/0"]

    def test_failure_does_not_stop_later_entities(self, store):
        broken = FakeSource("bad", detail_error=True)
        healthy = FakeSource("good")
        tasks = [
            EnrichmentTask(source=broken.source, entities=reconcile(store, "bad", 1), generation=1),
            EnrichmentTask(source=healthy.source, entities=reconcile(store, "good", 1), generation=1),
        ]

        _, updates = run_pipeline(store, [broken, healthy], tasks)

        assert [entity.url for _, entity in updates] == ["/good/0"]

    def test_unexpected_error_does_not_stall_later_batches(self, store):
        first, second = FakeSource("a"), FakeSource("b")
        tasks = [
            EnrichmentTask(source=first.source, entities=reconcile(store, "a", 1), generation=1),
            EnrichmentTask(source=second.source, entities=reconcile(store, "b", 1), generation=1),
        ]
        seen = []

        def on_update(source, entity):
            seen.append(entity.url)
            if len(seen) == 1:
                raise RuntimeError("consumer failed")

        async def scenario():
            pipeline = EnrichmentPipeline(
                store, {"a": first, "b": second}, on_update=on_update, generation=1
            )
            pipeline.start()
            for task in tasks:
                pipeline.offer(task)
            await asyncio.wait_for(pipeline.join(), timeout=5)
            running = pipeline.running
            await pipeline.stop()
            return pipeline, running

        pipeline, running = asyncio.run(scenario())

        assert seen == ["/a/0", "/b/0"]
        assert running is True
        assert pipeline.failed_count == 1


class TestLifecycle:
    def test_offer_rejected_after_stop_or_for_other_generation(self, store):
        source = FakeSource("a")
        entities = reconcile(store, "a", 1)

        async def scenario():
            pipeline = EnrichmentPipeline(store, {"a": source}, on_update=lambda s, e: None, generation=2)
            pipeline.start()
            stale = pipeline.offer(EnrichmentTask(source=source.source, entities=entities, generation=1))
            await pipeline.stop()
            late = pipeline.offer(EnrichmentTask(source=source.source, entities=entities, generation=2))
            return stale, late, pipeline.running

        stale, late, running = asyncio.run(scenario())

        assert stale is False
        assert late is False
        assert running is False

    def test_offer_never_blocks(self, store):
        """Offering outpaces the consumer without blocking or dropping."""
        source = FakeSource("a")
        entities = reconcile(store, "a", 1)

        async def scenario():
            pipeline = EnrichmentPipeline(store, {"a": source}, on_update=lambda s, e: None, generation=1)
            pipeline.start()
            accepted = [
                pipeline.offer(EnrichmentTask(source=source.source, entities=entities, generation=1))
                for _ in range(100)
            ]
            buffered = pipeline.pending
            await pipeline.join()
            await pipeline.stop()
            return accepted, buffered

        accepted, buffered = asyncio.run(scenario())

        assert all(accepted)
        assert buffered == 100
        # the first batch hydrates the entity; later batches see the stored copy
        assert source.detail_calls == ["/a/0"]


class TestDetailMapping:
    def test_normalizes_results(self):
        assert detail_mapping(None) == {}
        assert detail_mapping({"author": "A"}) == {"author": "A"}
        assert detail_mapping(SearchRecord(url="/u", title="T"))["title"] == "T"
