from __future__ import annotations

"""Hybrid vector and lexical search with result caching."""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum

from codeindex.app.metrics import RAGMetricsCollector, SearchMetric
from codeindex.rag.embeddings import EmbeddingProvider
from codeindex.rag.types import CodeChunk, SearchResult
from codeindex.vectorstore.cache import CacheKey, SearchCache
from codeindex.vectorstore.repository import ChunkRepository

logger = logging.getLogger(__name__)

RRF_K = 60


class FusionMethod(str, Enum):
    LINEAR = "linear"
    RECIPROCAL_RANK = "rrf"


def hybrid_score(vector_similarity: float, bm25_score: float, alpha: float) -> float:
    """Weighted blend of a vector similarity and a normalized BM25 score."""
    return alpha * vector_similarity + (1.0 - alpha) * bm25_score


def reciprocal_rank(rank: int | None, k: int = RRF_K) -> float:
    """RRF contribution of a zero-based rank; absent results contribute 0."""
    if rank is None:
        return 0.0
    return 1.0 / (rank + k)


def query_hash(query: str) -> str:
    return hashlib.sha256(query.encode("utf-8")).hexdigest()[:16]


@dataclass
class _Candidate:
    chunk: CodeChunk
    vector_similarity: float = 0.0
    bm25_score: float = 0.0
    vector_rank: int | None = None
    lexical_rank: int | None = None


@dataclass
class HybridSearchService:
    """Fuse vector and BM25 rankings for one scope (codebase).

    Linear fusion normalizes BM25 by the best lexical score of the query and
    keeps results whose hybrid score reaches the threshold. Rank fusion uses
    reciprocal ranks and ignores the threshold, since its scores are not on
    a similarity scale.
    """
    repository: ChunkRepository
    embedder: EmbeddingProvider
    cache: SearchCache | None = None
    metrics: RAGMetricsCollector | None = None
    alpha: float = 0.7
    fusion: FusionMethod = FusionMethod.LINEAR
    candidate_multiplier: int = 3

    async def search(
        self,
        scope_id: str,
        query: str,
        limit: int = 10,
        threshold: float = 0.5,
    ) -> list[SearchResult]:
        started = time.perf_counter()
        embedding = await asyncio.to_thread(self.embedder.embed, query)
        key = CacheKey.for_query(scope_id, embedding, limit, threshold)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                self._record(query, started, len(cached), cache_hit=True)
                return cached

        candidates = max(limit, 1) * max(self.candidate_multiplier, 1)
        vector_results, lexical_results = await asyncio.gather(
            self.repository.find_similar_chunks(scope_id, embedding, candidates),
            self.repository.search_chunks(scope_id, query, candidates),
        )
        results = self._fuse(vector_results, lexical_results, threshold)[:limit]

        if self.cache is not None:
            self.cache.set(key, results)
        self._record(query, started, len(results), cache_hit=False)
        logger.info(
            "hybrid_search_completed",
            extra={
                "scope_id": scope_id,
                "vector_hits": len(vector_results),
                "lexical_hits": len(lexical_results),
                "results": len(results),
            },
        )
        return results

    def _fuse(
        self,
        vector_results: list[SearchResult],
        lexical_results: list[SearchResult],
        threshold: float,
    ) -> list[SearchResult]:
        merged: dict[str, _Candidate] = {}
        for rank, result in enumerate(vector_results):
            candidate = merged.setdefault(result.chunk.id, _Candidate(chunk=result.chunk))
            candidate.vector_similarity = result.vector_similarity or result.score
            candidate.vector_rank = rank
        best_lexical = max((result.bm25_score or result.score for result in lexical_results), default=0.0)
        for rank, result in enumerate(lexical_results):
            candidate = merged.setdefault(result.chunk.id, _Candidate(chunk=result.chunk))
            raw = result.bm25_score or result.score
            candidate.bm25_score = raw / best_lexical if best_lexical > 0 else 0.0
            candidate.lexical_rank = rank

        fused: list[SearchResult] = []
        for candidate in merged.values():
            if self.fusion == FusionMethod.RECIPROCAL_RANK:
                score = self.alpha * reciprocal_rank(candidate.vector_rank) + (
                    1.0 - self.alpha
                ) * reciprocal_rank(candidate.lexical_rank)
            else:
                score = hybrid_score(candidate.vector_similarity, candidate.bm25_score, self.alpha)
                if score < threshold:
                    continue
            fused.append(
                SearchResult(
                    chunk=candidate.chunk,
                    score=score,
                    vector_similarity=candidate.vector_similarity,
                    bm25_score=candidate.bm25_score,
                )
            )
        fused.sort(key=lambda item: (-item.score, item.chunk.file_path, item.chunk.start_line))
        return fused

    def _record(self, query: str, started: float, result_count: int, cache_hit: bool) -> None:
        if self.metrics is None:
            return
        self.metrics.record_search(
            SearchMetric(
                timestamp=time.time(),
                query_hash=query_hash(query),
                latency=time.perf_counter() - started,
                result_count=result_count,
                cache_hit=cache_hit,
            )
        )
