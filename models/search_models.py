"""
Data model for federated search.

Provider-origin records (SearchRecord, SearchPage), persisted identities
(LocalEntity), and the aggregate view published to callers (AggregateEntry,
AggregateSnapshot). All containers handed across task boundaries are frozen
dataclasses holding tuples, so a published snapshot can never change underneath
a consumer.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

# Optional detail fields a provider may fill in; shared by records and entities.
DETAIL_FIELDS = ("thumbnail_url", "author", "description", "genre", "status")


@dataclass(frozen=True)
class Source:
    """An independent content provider taking part in a federated search."""

    id: str
    name: str
    lang: str

    @property
    def sort_key(self) -> str:
        """Composite "name (language)" key used as the final ordering tie-break."""
        return f"{self.name} ({self.lang})"


@dataclass(frozen=True)
class SearchRecord:
    """
    One item returned by a provider search.

    Attributes:
        url: Source-scoped identifier of the item
        title: Display title
        thumbnail_url: Optional preview reference
    """

    url: str
    title: str
    thumbnail_url: str | None = None
    author: str | None = None
    description: str | None = None
    genre: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class SearchPage:
    """A page of provider results."""

    records: tuple[SearchRecord, ...] = field(default_factory=tuple)
    has_more: bool = False

    def __post_init__(self):
        if not isinstance(self.records, tuple):
            object.__setattr__(self, "records", tuple(self.records))


@dataclass(frozen=True)
class LocalEntity:
    """
    Persisted identity of a provider record, keyed by (source_id, url).

    Instances are immutable; enrichment produces an updated copy via
    ``with_details`` which is then persisted by the store.
    """

    id: int | None
    source_id: str
    url: str
    title: str
    thumbnail_url: str | None = None
    author: str | None = None
    description: str | None = None
    genre: str | None = None
    status: str | None = None
    initialized: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.url)

    @property
    def needs_details(self) -> bool:
        """True while the preview reference is missing and detail was never fetched."""
        return self.thumbnail_url is None and not self.initialized

    @classmethod
    def from_record(cls, source_id: str, record: SearchRecord, entity_id: int | None = None):
        return cls(
            id=entity_id,
            source_id=source_id,
            url=record.url,
            title=record.title,
            thumbnail_url=record.thumbnail_url,
            author=record.author,
            description=record.description,
            genre=record.genre,
            status=record.status,
        )

    def to_record(self) -> SearchRecord:
        """Provider-facing view of the entity, passed to ``fetch_detail``."""
        return SearchRecord(
            url=self.url,
            title=self.title,
            thumbnail_url=self.thumbnail_url,
            author=self.author,
            description=self.description,
            genre=self.genre,
            status=self.status,
        )

    def with_details(self, details: dict[str, Any]) -> "LocalEntity":
        """
        Return a copy with non-empty detail values merged in and ``initialized`` set.

        Identity fields (id, source_id, url) are never taken from ``details``.
        """
        changes: dict[str, Any] = {}
        title = details.get("title")
        if title:
            changes["title"] = title
        for name in DETAIL_FIELDS:
            value = details.get(name)
            if value not in (None, ""):
                changes[name] = value
        return replace(self, initialized=True, **changes)

    def detail_values(self) -> dict[str, Any]:
        values = {name: getattr(self, name) for name in DETAIL_FIELDS}
        values["title"] = self.title
        values["initialized"] = self.initialized
        return values


class EntryState(str, Enum):
    PENDING = "pending"
    EMPTY = "empty"
    RESULTS = "results"


@dataclass(frozen=True)
class AggregateEntry:
    """Per-source slot of the aggregate view for the current query."""

    source: Source
    state: EntryState = EntryState.PENDING
    results: tuple[LocalEntity, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.results, tuple):
            object.__setattr__(self, "results", tuple(self.results))
        # A completed entry without items is always "empty", whatever the cause
        if self.state == EntryState.RESULTS and not self.results:
            object.__setattr__(self, "state", EntryState.EMPTY)
        if self.state != EntryState.RESULTS and self.results:
            raise ValueError(f"{self.state.value} entry cannot hold results")

    @classmethod
    def pending(cls, source: Source) -> "AggregateEntry":
        return cls(source=source, state=EntryState.PENDING)

    @classmethod
    def empty(cls, source: Source) -> "AggregateEntry":
        return cls(source=source, state=EntryState.EMPTY)

    @classmethod
    def completed(cls, source: Source, results) -> "AggregateEntry":
        return cls(source=source, state=EntryState.RESULTS, results=tuple(results))

    @property
    def has_results(self) -> bool:
        return self.state == EntryState.RESULTS

    @property
    def is_pending(self) -> bool:
        return self.state == EntryState.PENDING


@dataclass(frozen=True)
class AggregateSnapshot:
    """
    Externally visible ordered state: exactly one entry per source id.

    Attributes:
        query: Query text the snapshot belongs to
        generation: Monotonic query generation number
        entries: Ordered entries, fully recomputed on every change
    """

    query: str
    generation: int
    entries: tuple[AggregateEntry, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.entries, tuple):
            object.__setattr__(self, "entries", tuple(self.entries))

    @property
    def source_ids(self) -> list[str]:
        return [entry.source.id for entry in self.entries]

    @property
    def is_complete(self) -> bool:
        """True once no entry is pending."""
        return all(not entry.is_pending for entry in self.entries)

    def entry_for(self, source_id: str) -> AggregateEntry | None:
        for entry in self.entries:
            if entry.source.id == source_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class EnrichmentTask:
    """A reconciled batch waiting for detail hydration."""

    source: Source
    entities: tuple[LocalEntity, ...]
    generation: int


@dataclass(frozen=True)
class EnrichmentUpdate:
    """Notification that an entity of ``source`` has been hydrated."""

    source: Source
    entity: LocalEntity
    query: str
    generation: int


@dataclass(frozen=True)
class ReconciliationFailure:
    """Notification that one provider record could not be reconciled with the store."""

    source: Source
    url: str
    error: str
    query: str
    generation: int


@dataclass(frozen=True)
class WorkingSet:
    """Sources eligible for a query plus the caller's pinned-id set (ordering input only)."""

    sources: tuple[Source, ...] = field(default_factory=tuple)
    pinned_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if not isinstance(self.sources, tuple):
            object.__setattr__(self, "sources", tuple(self.sources))
        if not isinstance(self.pinned_ids, frozenset):
            object.__setattr__(self, "pinned_ids", frozenset(self.pinned_ids))
        seen: set[str] = set()
        for source in self.sources:
            if source.id in seen:
                raise ValueError(f"Duplicate source id in working set: {source.id}")
            seen.add(source.id)

    def __len__(self) -> int:
        return len(self.sources)
