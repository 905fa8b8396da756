from abc import ABC, abstractmethod
from typing import Any

from models.search_models import SearchPage, SearchRecord, Source


class BaseSource(ABC):
    """
    Abstract base class for searchable content providers.

    Concrete sources own their transport (HTTP, local index, ...) and its
    timeouts. Both capabilities may be plain blocking methods, which the
    orchestrator runs on the I/O thread pool, or ``async def`` coroutines,
    which are awaited directly.
    """

    def __init__(self, source_id: str, name: str, lang: str = "en", **kwargs):
        """
        Initialize the source.

        Args:
            source_id: Stable identifier, unique across the working set
            name: Display name
            lang: Language tag of the catalogue
            **kwargs: Source-specific parameters
        """
        self.source_id = str(source_id)
        self.name = name
        self.lang = lang

    @property
    def source(self) -> Source:
        """Immutable descriptor used in snapshots and notifications."""
        return Source(id=self.source_id, name=self.name, lang=self.lang)

    @abstractmethod
    def search(self, page: int, query: str, filters: list[Any]) -> SearchPage:
        """
        Search the provider catalogue.

        Args:
            page: 1-based page number
            query: Free-text query
            filters: Provider-specific filter list (empty for federated search)

        Returns:
            SearchPage with the records of the requested page
        """

    @abstractmethod
    def fetch_detail(self, record: SearchRecord) -> dict[str, Any]:
        """
        Fetch detail fields for a record.

        Args:
            record: Record identifying the item (``url`` is the provider key)

        Returns:
            Mapping of field name to value; any of ``title``, ``thumbnail_url``,
            ``author``, ``description``, ``genre``, ``status``. Unknown keys are ignored.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.source_id!r}, name={self.name!r})"
