"""
EnrichmentPipeline - background hydration of incomplete local entities.

Reconciled batches are offered to an explicit queue without ever blocking the
fan-out; a single worker task drains it sequentially, fetching details for
entities that still lack a preview reference. Detail-fetch failures are
absorbed: the entity keeps its current values and is not retried.

One pipeline instance serves exactly one query generation. The coordinator
stops it on supersession, which cancels the worker and discards whatever is
still buffered.
"""

import asyncio
import dataclasses
from collections.abc import Callable, Mapping
from typing import Any

from models.search_models import EnrichmentTask, LocalEntity, SearchRecord, Source
from orchestrator.reconciliation_store import ReconciliationStore
from sources.base_source import BaseSource
from utils.async_utils import run_capability
from utils.logger import get_logger

logger = get_logger(__name__)


def detail_mapping(details: Any) -> dict[str, Any]:
    """Normalize a ``fetch_detail`` result into a field mapping."""
    if details is None:
        return {}
    if isinstance(details, Mapping):
        return dict(details)
    if isinstance(details, SearchRecord):
        return dataclasses.asdict(details)
    raise TypeError(f"Unsupported detail result type: {type(details).__name__}")


class EnrichmentPipeline:
    """
    Sequential detail fetcher for one query generation.

    Example usage:
        pipeline = EnrichmentPipeline(store, sources_by_id, on_update=print, generation=3)
        pipeline.start()
        pipeline.offer(task)
        await pipeline.join()
        await pipeline.stop()
    """

    def __init__(
        self,
        store: ReconciliationStore,
        sources: Mapping[str, BaseSource],
        on_update: Callable[[Source, LocalEntity], None],
        generation: int = 0,
    ):
        """
        Args:
            store: Store used to persist hydrated entities
            sources: Source capabilities by source id
            on_update: Receives (source, hydrated entity) for every successful fetch
            generation: Query generation this pipeline belongs to
        """
        self.store = store
        self.sources = dict(sources)
        self.on_update = on_update
        self.generation = generation

        self._queue: asyncio.Queue[EnrichmentTask] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._stopped = False

        self.enriched_count = 0
        self.skipped_count = 0
        self.failed_count = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        """Batches buffered and not yet picked up by the worker."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker task (requires a running event loop)."""
        if self._worker is not None:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name=f"enrichment-gen-{self.generation}"
        )

    def offer(self, task: EnrichmentTask) -> bool:
        """
        Buffer a reconciled batch. Never blocks and never drops while running.

        Returns:
            False if the pipeline was stopped or the task belongs to another generation
        """
        if self._stopped or task.generation != self.generation:
            return False
        self._queue.put_nowait(task)
        return True

    async def join(self) -> None:
        """Wait until every buffered batch has been processed."""
        if self._worker is None:
            return
        await self._queue.join()

    def cancel(self) -> asyncio.Task | None:
        """
        Stop accepting batches, cancel the worker and discard the buffer.

        Returns:
            The cancelled worker task (if any) so callers can await its teardown
        """
        self._stopped = True
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        return worker

    async def stop(self) -> None:
        """Cancel the worker and wait for it to finish."""
        worker = self.cancel()
        if worker is not None:
            await asyncio.gather(worker, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._process(task)
            except Exception as e:
                self.failed_count += 1
                logger.error(
                    f"Enrichment batch for {task.source.id} aborted: {e}",
                    exc_info=True,
                    extra={
                        "extra_fields": {
                            "source_id": task.source.id,
                            "error_type": type(e).__name__,
                            "generation": self.generation,
                        }
                    },
                )
            finally:
                self._queue.task_done()

    async def _process(self, task: EnrichmentTask) -> None:
        source = self.sources.get(task.source.id)
        if source is None:
            logger.warning(
                f"No source capability for {task.source.id}; skipping batch",
                extra={
                    "extra_fields": {"source_id": task.source.id, "generation": self.generation}
                },
            )
            return

        for entity in task.entities:
            if self._stopped:
                return
            if not entity.needs_details:
                self.skipped_count += 1
                continue
            current = await self._current(entity)
            if not current.needs_details:
                self.skipped_count += 1
                continue
            updated = await self._enrich(source, current)
            if updated is not None and not self._stopped:
                self.on_update(task.source, updated)

    async def _current(self, entity: LocalEntity) -> LocalEntity:
        """Latest stored version of ``entity``; an earlier batch may have hydrated it."""
        try:
            stored = await run_capability(self.store.get, entity.source_id, entity.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Could not re-read {entity.source_id}/{entity.url}: {e}",
                extra={
                    "extra_fields": {
                        "source_id": entity.source_id,
                        "error_type": type(e).__name__,
                    }
                },
            )
            return entity
        return stored if stored is not None else entity

    async def _enrich(self, source: BaseSource, entity: LocalEntity) -> LocalEntity | None:
        try:
            details = detail_mapping(await run_capability(source.fetch_detail, entity.to_record()))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_count += 1
            logger.warning(
                f"Detail fetch failed for {entity.source_id}/{entity.url}: {e}",
                extra={
                    "extra_fields": {
                        "source_id": entity.source_id,
                        "url": entity.url,
                        "error_type": type(e).__name__,
                        "generation": self.generation,
                    }
                },
            )
            return None

        try:
            stored = await run_capability(self.store.upsert_details, entity.with_details(details))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_count += 1
            logger.error(
                f"Persisting details failed for {entity.source_id}/{entity.url}: {e}",
                extra={
                    "extra_fields": {
                        "source_id": entity.source_id,
                        "url": entity.url,
                        "error_type": type(e).__name__,
                    }
                },
            )
            return None

        self.enriched_count += 1
        return stored
