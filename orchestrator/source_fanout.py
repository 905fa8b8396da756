"""
SourceFanout - bounded concurrent search across every source of a query.

At most ``max_concurrency`` provider calls are in flight at once; queued
sources start in submission order as slots free up. A failing provider only
affects its own entry, which becomes "empty". Completed entries are handed to
``on_entry`` in completion order from a single collecting task, so the
consumer never sees two completions at the same time.
"""

import asyncio
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from config.config import DEFAULT_FANOUT_CONCURRENCY, DEFAULT_MAX_RESULTS_PER_SOURCE
from models.errors import ReconciliationError
from models.search_models import (
    AggregateEntry,
    EnrichmentTask,
    LocalEntity,
    SearchPage,
    SearchRecord,
)
from orchestrator.reconciliation_store import ReconciliationStore
from sources.base_source import BaseSource
from utils.async_utils import run_capability
from utils.logger import get_logger

logger = get_logger(__name__)

FIRST_PAGE = 1


def page_records(page: Any) -> list[SearchRecord]:
    """
    Normalize a provider's search result into a list of records.

    Accepts a SearchPage, a ``(records, has_more)`` pair where ``has_more`` is
    any bool-like value, or a bare sequence of SearchRecord.

    Raises:
        TypeError: For any other shape
    """
    if isinstance(page, SearchPage):
        return list(page.records)
    if isinstance(page, Sequence) and not isinstance(page, (str, bytes)):
        if (
            len(page) == 2
            and isinstance(page[1], int)
            and isinstance(page[0], Iterable)
            and not isinstance(page[0], (str, bytes))
        ):
            records = list(page[0])
        else:
            records = list(page)
        if all(isinstance(record, SearchRecord) for record in records):
            return records
    raise TypeError(f"Unsupported search result type: {type(page).__name__}")


class SourceFanout:
    """
    One fan-out run over a working set.

    Example usage:
        fanout = SourceFanout(store, max_concurrency=5)
        await fanout.run(sources, "query", generation=1, on_entry=merger.apply)
    """

    def __init__(
        self,
        store: ReconciliationStore,
        max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
        max_results: int = DEFAULT_MAX_RESULTS_PER_SOURCE,
        on_batch: Callable[[EnrichmentTask], None] | None = None,
        on_failure: Callable[[BaseSource, str, ReconciliationError], None] | None = None,
    ):
        """
        Args:
            store: Reconciliation store used to map records to local entities
            max_concurrency: Maximum provider calls in flight (K)
            max_results: Records kept per source (M)
            on_batch: Receives every reconciled, non-empty batch (enrichment input)
            on_failure: Receives records whose reconciliation failed
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_results < 1:
            raise ValueError("max_results must be >= 1")
        self.store = store
        self.max_concurrency = max_concurrency
        self.max_results = max_results
        self.on_batch = on_batch
        self.on_failure = on_failure

        self.in_flight = 0
        self.peak_in_flight = 0
        self.calls_started = 0
        self.invalid_results = 0
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop issuing calls and drop results of calls still in flight."""
        self._cancelled = True

    async def _search(self, source: BaseSource, query: str) -> list[SearchRecord] | None:
        """Run one provider call; ``None`` means the call failed."""
        self.in_flight += 1
        self.calls_started += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            page = await run_capability(source.search, FIRST_PAGE, query, [])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Search failed for source {source.name} ({source.lang}): {e}",
                extra={
                    "extra_fields": {
                        "source_id": source.source_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            return None
        finally:
            self.in_flight -= 1

        try:
            return page_records(page)
        except TypeError as e:
            self.invalid_results += 1
            logger.error(
                f"Source {source.name} ({source.lang}) returned an unusable search result: {e}",
                extra={
                    "extra_fields": {
                        "source_id": source.source_id,
                        "result_type": type(page).__name__,
                    }
                },
            )
            return None

    async def _reconcile(
        self, source: BaseSource, records: Sequence[SearchRecord]
    ) -> list[LocalEntity]:
        entities: list[LocalEntity] = []
        for record in records:
            if self._cancelled:
                break
            try:
                entity = await run_capability(
                    self.store.find_or_create, source.source_id, record.url, record
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = (
                    e
                    if isinstance(e, ReconciliationError)
                    else ReconciliationError(str(e), source_id=source.source_id, url=record.url)
                )
                logger.error(
                    f"Reconciliation failed for {source.source_id}/{record.url}: {e}",
                    extra={
                        "extra_fields": {
                            "source_id": source.source_id,
                            "url": record.url,
                            "error_type": type(e).__name__,
                        }
                    },
                )
                if self.on_failure is not None:
                    self.on_failure(source, record.url, error)
                continue
            entities.append(entity)
        return entities

    async def _run_source(
        self, source: BaseSource, query: str, generation: int, slots: asyncio.Semaphore
    ) -> AggregateEntry | None:
        async with slots:
            if self._cancelled:
                return None
            records = await self._search(source, query)
            if records is None:
                return AggregateEntry.empty(source.source)

            entities = await self._reconcile(source, records[: self.max_results])
            if self._cancelled:
                return None
            if entities and self.on_batch is not None:
                self.on_batch(
                    EnrichmentTask(
                        source=source.source, entities=tuple(entities), generation=generation
                    )
                )
            return AggregateEntry.completed(source.source, entities)

    async def run(
        self,
        sources: Sequence[BaseSource],
        query: str,
        generation: int,
        on_entry: Callable[[AggregateEntry], Any],
    ) -> int:
        """
        Query every source and hand each completed entry to ``on_entry``.

        Returns:
            Number of entries delivered
        """
        logger.info(
            f"Starting fan-out over {len(sources)} sources",
            extra={
                "extra_fields": {
                    "generation": generation,
                    "source_count": len(sources),
                    "max_concurrency": self.max_concurrency,
                }
            },
        )

        slots = asyncio.Semaphore(self.max_concurrency)
        tasks = [
            asyncio.create_task(self._run_source(source, query, generation, slots))
            for source in sources
        ]
        delivered = 0
        empty = 0
        try:
            for next_done in asyncio.as_completed(tasks):
                entry = await next_done
                if self._cancelled:
                    break
                if entry is None:
                    continue
                if not entry.has_results:
                    empty += 1
                on_entry(entry)
                delivered += 1
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            f"Fan-out complete: {delivered - empty} with results, {empty} empty",
            extra={
                "extra_fields": {
                    "generation": generation,
                    "delivered": delivered,
                    "empty": empty,
                    "cancelled": self._cancelled,
                    "peak_in_flight": self.peak_in_flight,
                }
            },
        )
        return delivered
