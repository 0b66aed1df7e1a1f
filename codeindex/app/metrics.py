from __future__ import annotations

"""Search and retrieval metrics with Prometheus mirroring."""

import threading
from dataclasses import dataclass, field

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from codeindex.app.settings import settings

SEARCH_COUNT = Counter(
    "codeindex_searches_total",
    "Total hybrid searches",
    ["cache"],
)
SEARCH_LATENCY = Histogram(
    "codeindex_search_duration_seconds",
    "Hybrid search duration in seconds",
)
RETRIEVAL_COUNT = Counter(
    "codeindex_retrievals_total",
    "Total context retrievals",
)
RETRIEVAL_LATENCY = Histogram(
    "codeindex_retrieval_duration_seconds",
    "Context retrieval duration in seconds",
)
INDEXED_FILES = Counter(
    "codeindex_indexed_files_total",
    "Files processed by the indexing pipeline",
    ["status"],
)
INDEXED_CHUNKS = Counter(
    "codeindex_indexed_chunks_total",
    "Chunks saved by the indexing pipeline",
)


@dataclass(frozen=True)
class SearchMetric:
    timestamp: float
    query_hash: str
    latency: float
    result_count: int
    cache_hit: bool


@dataclass(frozen=True)
class RetrievalMetric:
    timestamp: float
    query_id: str
    latency: float
    context_size: int
    stages_executed: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RAGStatistics:
    """Aggregated view over the stored metric records."""
    total_searches: int
    total_retrievals: int
    average_search_latency: float
    average_retrieval_latency: float
    cache_hit_rate: float
    average_result_count: float
    average_context_size: float
    p95_search_latency: float
    p99_search_latency: float

    @property
    def is_performant(self) -> bool:
        return (
            self.average_search_latency < 0.1
            and self.p95_search_latency < 0.5
            and self.cache_hit_rate > 0.3
        )


def percentile(sorted_values: list[float], fraction: float) -> float:
    """Nearest-rank style percentile on an ascending list."""
    if not sorted_values:
        return 0.0
    index = min(int(len(sorted_values) * fraction), len(sorted_values) - 1)
    return sorted_values[index]


class RAGMetricsCollector:
    """Bounded in-memory store of search and retrieval records.

    When the combined record count exceeds ``max_stored_metrics`` the oldest
    records are dropped from both streams in proportion to their size.
    """

    def __init__(self, max_stored_metrics: int = 10_000) -> None:
        self.max_stored_metrics = max(1, max_stored_metrics)
        self._searches: list[SearchMetric] = []
        self._retrievals: list[RetrievalMetric] = []
        self._lock = threading.Lock()

    def record_search(self, metric: SearchMetric) -> None:
        with self._lock:
            self._searches.append(metric)
            self._trim()
        if settings.metrics_enabled:
            SEARCH_COUNT.labels("hit" if metric.cache_hit else "miss").inc()
            SEARCH_LATENCY.observe(metric.latency)

    def record_retrieval(self, metric: RetrievalMetric) -> None:
        with self._lock:
            self._retrievals.append(metric)
            self._trim()
        if settings.metrics_enabled:
            RETRIEVAL_COUNT.inc()
            RETRIEVAL_LATENCY.observe(metric.latency)

    def get_statistics(self) -> RAGStatistics:
        with self._lock:
            searches = list(self._searches)
            retrievals = list(self._retrievals)

        latencies = sorted(metric.latency for metric in searches)
        search_count = len(searches)
        retrieval_count = len(retrievals)
        return RAGStatistics(
            total_searches=search_count,
            total_retrievals=retrieval_count,
            average_search_latency=sum(latencies) / search_count if search_count else 0.0,
            average_retrieval_latency=(
                sum(metric.latency for metric in retrievals) / retrieval_count
                if retrieval_count
                else 0.0
            ),
            cache_hit_rate=(
                sum(1 for metric in searches if metric.cache_hit) / search_count
                if search_count
                else 0.0
            ),
            average_result_count=(
                sum(metric.result_count for metric in searches) / search_count
                if search_count
                else 0.0
            ),
            average_context_size=(
                sum(metric.context_size for metric in retrievals) / retrieval_count
                if retrieval_count
                else 0.0
            ),
            p95_search_latency=percentile(latencies, 0.95),
            p99_search_latency=percentile(latencies, 0.99),
        )

    def clear(self) -> None:
        with self._lock:
            self._searches.clear()
            self._retrievals.clear()

    def _trim(self) -> None:
        total = len(self._searches) + len(self._retrievals)
        excess = total - self.max_stored_metrics
        if excess <= 0:
            return
        from_searches = min(len(self._searches), round(excess * len(self._searches) / total))
        from_retrievals = excess - from_searches
        if from_retrievals > len(self._retrievals):
            from_searches += from_retrievals - len(self._retrievals)
            from_retrievals = len(self._retrievals)
        del self._searches[:from_searches]
        del self._retrievals[:from_retrievals]


def record_indexed_file(status: str, chunk_count: int = 0) -> None:
    if not settings.metrics_enabled:
        return
    INDEXED_FILES.labels(status).inc()
    if chunk_count:
        INDEXED_CHUNKS.inc(chunk_count)


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus exposition body and its content type."""
    if not settings.metrics_enabled:
        return b"", CONTENT_TYPE_LATEST
    return generate_latest(), CONTENT_TYPE_LATEST
