"""
Models package for federated search records, entities and aggregate snapshots.
"""

from .errors import FederatedSearchError, ReconciliationError
from .search_models import (
    AggregateEntry,
    AggregateSnapshot,
    EnrichmentTask,
    EnrichmentUpdate,
    EntryState,
    LocalEntity,
    ReconciliationFailure,
    SearchPage,
    SearchRecord,
    Source,
    WorkingSet,
)

__all__ = [
    "AggregateEntry",
    "AggregateSnapshot",
    "EnrichmentTask",
    "EnrichmentUpdate",
    "EntryState",
    "FederatedSearchError",
    "LocalEntity",
    "ReconciliationError",
    "ReconciliationFailure",
    "SearchPage",
    "SearchRecord",
    "Source",
    "WorkingSet",
]
