import threading
import time

import pytest

from models.search_models import SearchPage, SearchRecord
from orchestrator.reconciliation_store import InMemoryReconciliationStore
from sources.base_source import BaseSource


def make_records(source_id: str, count: int, with_thumbnails: bool = False) -> list[SearchRecord]:
    return [
        SearchRecord(
            url=f"/{source_id}/item/{i}",
            title=f"{source_id} item {i}",
            thumbnail_url=f"https://img.example/{source_id}/{i}.jpg" if with_thumbnails else None,
        )
        for i in range(count)
    ]


class FakeSource(BaseSource):
    """
    Fake blocking source for testing purposes.

    Tracks how many of its calls (across all FakeSources sharing ``tracker``)
    are in flight at the same time.
    """

    def __init__(
        self,
        source_id: str,
        name: str | None = None,
        lang: str = "en",
        result_count: int = 3,
        latency_s: float = 0.0,
        should_error: bool = False,
        detail_error: bool = False,
        details: dict | None = None,
        with_thumbnails: bool = False,
        tracker: "InFlightTracker | None" = None,
        release: threading.Event | None = None,
    ):
        super().__init__(source_id, name or f"Source {source_id}", lang)
        self.result_count = result_count
        self.latency_s = latency_s
        self.should_error = should_error
        self.detail_error = detail_error
        self.details = details if details is not None else {"thumbnail_url": "cover.jpg"}
        self.with_thumbnails = with_thumbnails
        self.tracker = tracker
        self.release = release
        self.search_calls: list[str] = []
        self.detail_calls: list[str] = []

    def search(self, page, query, filters):
        self.search_calls.append(query)
        if self.tracker is not None:
            self.tracker.enter(self.source_id)
        try:
            if self.release is not None:
                self.release.wait(timeout=5)
            if self.latency_s:
                time.sleep(self.latency_s)
            if self.should_error:
                raise TimeoutError(f"{self.source_id} timed out")
            return SearchPage(
                records=make_records(self.source_id, self.result_count, self.with_thumbnails),
                has_more=False,
            )
        finally:
            if self.tracker is not None:
                self.tracker.leave()

    def fetch_detail(self, record):
        self.detail_calls.append(record.url)
        if self.detail_error:
            raise ConnectionError("detail endpoint unavailable")
        return dict(self.details)


class InFlightTracker:
    """Thread-safe counter of concurrently running provider calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0
        self.started: list[str] = []

    def enter(self, source_id: str) -> None:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
            self.started.append(source_id)

    def leave(self) -> None:
        with self._lock:
            self.current -= 1


@pytest.fixture
def store():
    """Fresh in-memory reconciliation store."""
    return InMemoryReconciliationStore()


@pytest.fixture
def tracker():
    return InFlightTracker()


@pytest.fixture
def mock_env(monkeypatch):
    """Fixture to mock environment variables for testing."""
    env_vars = {
        "FANOUT_CONCURRENCY": "3",
        "MAX_RESULTS_PER_SOURCE": "7",
        "DATABASE_URL": "sqlite:///test_federated.db",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars
