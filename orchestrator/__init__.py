"""
Federated search orchestration: fan-out, merge, enrichment and query lifecycle.
"""

from orchestrator.enrichment_pipeline import EnrichmentPipeline
from orchestrator.notifications import NotificationStream, Subscription
from orchestrator.query_coordinator import QueryCoordinator
from orchestrator.reconciliation_store import (
    InMemoryReconciliationStore,
    ReconciliationStore,
    SqlReconciliationStore,
)
from orchestrator.result_merger import ResultMerger, entry_sort_key
from orchestrator.source_fanout import SourceFanout
from orchestrator.working_set import enabled_sources, select_sources

__all__ = [
    "EnrichmentPipeline",
    "InMemoryReconciliationStore",
    "NotificationStream",
    "QueryCoordinator",
    "ReconciliationStore",
    "ResultMerger",
    "SourceFanout",
    "SqlReconciliationStore",
    "Subscription",
    "enabled_sources",
    "entry_sort_key",
    "select_sources",
]
