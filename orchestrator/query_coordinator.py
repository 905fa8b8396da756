"""
QueryCoordinator - lifecycle owner of "the current query".

Each distinct submitted query opens a new generation: the previous fan-out
run and enrichment worker are cancelled, a fresh all-pending snapshot is
published immediately, and a new fan-out run starts. Every notification is
checked against the current generation right before it is published, so
nothing produced for a superseded query reaches callers once the next query
has been submitted.

All methods must be called from the thread running the event loop.
"""

import asyncio
from collections.abc import Iterable, Sequence
from typing import Any

from config.config import Config
from models.errors import ReconciliationError
from models.search_models import (
    AggregateEntry,
    AggregateSnapshot,
    EnrichmentUpdate,
    LocalEntity,
    ReconciliationFailure,
    Source,
    WorkingSet,
)
from orchestrator.enrichment_pipeline import EnrichmentPipeline
from orchestrator.notifications import NotificationStream
from orchestrator.reconciliation_store import ReconciliationStore
from orchestrator.result_merger import ResultMerger
from orchestrator.source_fanout import SourceFanout
from sources.base_source import BaseSource
from utils.logger import get_logger

logger = get_logger(__name__)


class QueryCoordinator:
    """
    Federated search entry point.

    Example usage:
        coordinator = QueryCoordinator(sources, store, pinned_ids={"42"})
        coordinator.snapshots.add_listener(render)
        coordinator.enrichments.add_listener(update_cover)
        coordinator.submit_query("one piece")
        await coordinator.wait_idle()
    """

    def __init__(
        self,
        sources: Sequence[BaseSource],
        store: ReconciliationStore,
        pinned_ids: Iterable[str] = (),
        max_concurrency: int | None = None,
        max_results: int | None = None,
        initial_query: str | None = None,
    ):
        """
        Args:
            sources: Working set, already filtered by the caller
            store: Reconciliation store shared by fan-out and enrichment
            pinned_ids: Source ids ranked first among equal entries
            max_concurrency: Fan-out bound K (defaults to FANOUT_CONCURRENCY)
            max_results: Results kept per source M (defaults to MAX_RESULTS_PER_SOURCE)
            initial_query: Query submitted by ``start()``

        Raises:
            ValueError: If the configuration or an explicit bound is invalid
        """
        config = Config()
        if not config.validate():
            raise ValueError(f"Invalid configuration: {'; '.join(config.errors)}")
        self.store = store
        self.max_concurrency = (
            config.FANOUT_CONCURRENCY if max_concurrency is None else max_concurrency
        )
        self.max_results = config.MAX_RESULTS_PER_SOURCE if max_results is None else max_results
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.max_results < 1:
            raise ValueError("max_results must be >= 1")
        self.initial_query = initial_query

        self._sources: list[BaseSource] = []
        self._working_set = WorkingSet()
        self.set_working_set(sources, pinned_ids)

        self.snapshots: NotificationStream[AggregateSnapshot] = NotificationStream("snapshots")
        self.enrichments: NotificationStream[EnrichmentUpdate] = NotificationStream("enrichments")
        self.failures: NotificationStream[ReconciliationFailure] = NotificationStream("failures")

        self._query: str | None = None
        self._generation = 0
        self._merger: ResultMerger | None = None
        self._fanout: SourceFanout | None = None
        self._fanout_task: asyncio.Task | None = None
        self._pipeline: EnrichmentPipeline | None = None
        self._retired: set[asyncio.Task] = set()
        self._closed = False

        self.fanout_runs = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def query(self) -> str | None:
        """Currently active query text (None before the first submission)."""
        return self._query

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def working_set(self) -> WorkingSet:
        return self._working_set

    @property
    def current_snapshot(self) -> AggregateSnapshot | None:
        return self._merger.snapshot if self._merger is not None else None

    @property
    def fanout(self) -> SourceFanout | None:
        """Fan-out of the current generation, if one was started."""
        return self._fanout

    @property
    def pipeline(self) -> EnrichmentPipeline | None:
        """Enrichment pipeline of the current generation, if one was started."""
        return self._pipeline

    def set_working_set(
        self, sources: Sequence[BaseSource], pinned_ids: Iterable[str] = ()
    ) -> None:
        """Replace the working set; takes effect with the next submitted query."""
        self._sources = list(sources)
        self._working_set = WorkingSet(
            sources=tuple(source.source for source in self._sources),
            pinned_ids=frozenset(pinned_ids),
        )

    def saved_state(self) -> dict[str, Any]:
        """State to persist across re-creation of the caller (the active query)."""
        return {"query": self._query}

    def restore_state(self, state: dict[str, Any] | None) -> bool:
        """Resubmit a previously saved query; returns True if a search was started."""
        query = (state or {}).get("query")
        if query is None:
            return False
        return self.submit_query(query)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Submit ``initial_query`` if one was given."""
        if self.initial_query is None:
            return False
        return self.submit_query(self.initial_query)

    def submit_query(self, text: str) -> bool:
        """
        Start searching for ``text`` unless it is already the active query.

        Fire-and-forget: results arrive on the ``snapshots``, ``enrichments``
        and ``failures`` streams.

        Returns:
            True if a new query generation was started, False for a no-op

        Raises:
            RuntimeError: If the coordinator is closed or no event loop is running;
                the active query is left untouched
        """
        if self._closed:
            raise RuntimeError("QueryCoordinator is closed")
        if self._query is not None and text == self._query:
            logger.debug("Ignoring resubmission of the active query")
            return False

        # Nothing is replaced until the loop and the new generation's workers exist
        loop = asyncio.get_running_loop()
        generation = self._generation + 1
        working_set = self._working_set
        sources = list(self._sources)
        merger = ResultMerger(
            working_set.sources, working_set.pinned_ids, query=text, generation=generation
        )
        pipeline: EnrichmentPipeline | None = None
        fanout: SourceFanout | None = None
        if sources:
            pipeline = EnrichmentPipeline(
                self.store,
                {source.source_id: source for source in sources},
                on_update=lambda source, entity: self._publish_enrichment(
                    generation, text, source, entity
                ),
                generation=generation,
            )
            fanout = SourceFanout(
                self.store,
                max_concurrency=self.max_concurrency,
                max_results=self.max_results,
                on_batch=pipeline.offer,
                on_failure=lambda source, url, error: self._publish_failure(
                    generation, text, source, url, error
                ),
            )

        self._cancel_current()

        self._query = text
        self._generation = generation
        self._merger = merger

        logger.info(
            "Query submitted",
            extra={
                "extra_fields": {
                    "generation": generation,
                    "source_count": len(working_set),
                    "pinned_count": len(working_set.pinned_ids),
                }
            },
        )

        self.snapshots.publish(merger.snapshot)

        if pipeline is None or fanout is None:
            return True

        pipeline.start()
        self._pipeline = pipeline
        self._fanout = fanout
        self.fanout_runs += 1
        self._fanout_task = loop.create_task(
            fanout.run(
                sources,
                text,
                generation,
                on_entry=lambda entry: self._apply_entry(generation, merger, entry),
            ),
            name=f"fanout-gen-{generation}",
        )
        self._fanout_task.add_done_callback(self._log_fanout_result)
        return True

    async def wait_idle(self) -> None:
        """
        Wait until the current fan-out has finished and its enrichment buffer is drained.

        Raises whatever unexpected error ended the fan-out run.
        """
        while True:
            generation = self._generation
            task = self._fanout_task
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    if generation == self._generation:
                        raise
            pipeline = self._pipeline
            if pipeline is not None and generation == self._generation:
                await pipeline.join()
            if generation == self._generation:
                return

    async def close(self) -> None:
        """Cancel all work, end subscriptions and refuse further queries."""
        if self._closed:
            return
        self._closed = True
        self._cancel_current()
        if self._retired:
            await asyncio.gather(*self._retired, return_exceptions=True)
        self.snapshots.close()
        self.enrichments.close()
        self.failures.close()
        logger.info(
            "QueryCoordinator closed", extra={"extra_fields": {"generation": self._generation}}
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_current(self) -> None:
        if self._fanout is not None:
            self._fanout.cancel()
        task, self._fanout_task = self._fanout_task, None
        if task is not None and not task.done():
            task.cancel()
            self._retire(task)
        if self._pipeline is not None:
            worker = self._pipeline.cancel()
            if worker is not None:
                self._retire(worker)
        self._fanout = None
        self._pipeline = None

    def _retire(self, task: asyncio.Task) -> None:
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)

    def _apply_entry(self, generation: int, merger: ResultMerger, entry: AggregateEntry) -> None:
        if generation != self._generation:
            return
        self.snapshots.publish(merger.apply(entry))

    def _publish_enrichment(
        self, generation: int, query: str, source: Source, entity: LocalEntity
    ) -> None:
        if generation != self._generation:
            return
        self.enrichments.publish(
            EnrichmentUpdate(source=source, entity=entity, query=query, generation=generation)
        )

    def _publish_failure(
        self,
        generation: int,
        query: str,
        source: BaseSource,
        url: str,
        error: ReconciliationError,
    ) -> None:
        if generation != self._generation:
            return
        self.failures.publish(
            ReconciliationFailure(
                source=source.source,
                url=url,
                error=str(error),
                query=query,
                generation=generation,
            )
        )

    def _log_fanout_result(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Fan-out run ended with an unexpected error: {error}",
                exc_info=error,
                extra={"extra_fields": {"error_type": type(error).__name__}},
            )
