"""
ResultMerger - single writer of the aggregate snapshot.

Every applied entry triggers a full re-sort, so the published order depends
only on the current set of entries and never on the order in which sources
completed.
"""

from collections.abc import Iterable

from models.search_models import AggregateEntry, AggregateSnapshot, Source


def entry_sort_key(entry: AggregateEntry, pinned_ids: frozenset[str]) -> tuple[bool, bool, str]:
    """
    Total order for snapshot entries, as successive tie-breaks:

    1. entries holding results before pending/empty ones
    2. pinned sources first
    3. "name (language)" lexicographically
    """
    return (
        not entry.has_results,
        entry.source.id not in pinned_ids,
        entry.source.sort_key,
    )


class ResultMerger:
    """Holds the current per-source entries and derives ordered snapshots."""

    def __init__(
        self,
        sources: Iterable[Source],
        pinned_ids: Iterable[str] = (),
        query: str = "",
        generation: int = 0,
    ):
        self.query = query
        self.generation = generation
        self.pinned_ids = frozenset(pinned_ids)
        self._entries: dict[str, AggregateEntry] = {}
        for source in sources:
            if source.id in self._entries:
                raise ValueError(f"Duplicate source id: {source.id}")
            self._entries[source.id] = AggregateEntry.pending(source)
        self._snapshot = self._build()

    def _build(self) -> AggregateSnapshot:
        ordered = sorted(
            self._entries.values(), key=lambda entry: entry_sort_key(entry, self.pinned_ids)
        )
        return AggregateSnapshot(
            query=self.query, generation=self.generation, entries=tuple(ordered)
        )

    @property
    def snapshot(self) -> AggregateSnapshot:
        """Latest published snapshot."""
        return self._snapshot

    def apply(self, update: AggregateEntry) -> AggregateSnapshot:
        """
        Replace the entry of ``update.source`` and recompute the ordering.

        Raises:
            ValueError: If the source is not part of this merger's working set
        """
        source_id = update.source.id
        if source_id not in self._entries:
            raise ValueError(f"Unknown source id for this query: {source_id}")
        self._entries[source_id] = update
        self._snapshot = self._build()
        return self._snapshot
