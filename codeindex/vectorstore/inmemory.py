from __future__ import annotations

"""In-memory chunk repository for local runs and tests."""

import math
import re
from collections import Counter
from dataclasses import dataclass, field

from codeindex.rag.types import CodeChunk, CodeEmbedding, FlatIntegrityNode, SearchResult

_TERM_RE = re.compile(r"[A-Za-z0-9_]+")
BM25_K1 = 1.2
BM25_B = 0.75


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric terms used for lexical scoring."""
    return [match.group(0).lower() for match in _TERM_RE.finditer(text)]


@dataclass(frozen=True)
class FileParseStatus:
    is_parsed: bool
    error: str | None = None


@dataclass
class InMemoryChunkRepository:
    """Dictionary-backed repository with cosine and BM25 search."""
    chunks: dict[str, CodeChunk] = field(default_factory=dict)
    embeddings: dict[str, CodeEmbedding] = field(default_factory=dict)
    integrity_nodes: dict[str, list[FlatIntegrityNode]] = field(default_factory=dict)
    integrity_roots: dict[str, str] = field(default_factory=dict)
    file_status: dict[str, FileParseStatus] = field(default_factory=dict)

    async def save_chunks(self, chunks: list[CodeChunk]) -> list[CodeChunk]:
        for chunk in chunks:
            self.chunks[chunk.id] = chunk
        return list(chunks)

    async def save_embeddings(self, embeddings: list[CodeEmbedding]) -> None:
        for embedding in embeddings:
            self.embeddings[embedding.chunk_id] = embedding

    async def save_integrity_nodes(self, codebase_id: str, nodes: list[FlatIntegrityNode]) -> None:
        self.integrity_nodes[codebase_id] = list(nodes)

    async def save_integrity_root(self, codebase_id: str, root_hash: str) -> None:
        self.integrity_roots[codebase_id] = root_hash

    async def update_file_parsed(self, file_id: str, is_parsed: bool, error: str | None = None) -> None:
        self.file_status[file_id] = FileParseStatus(is_parsed=is_parsed, error=error)

    async def find_chunks_in_file(
        self,
        codebase_id: str,
        file_path: str,
        end_line_before: int | None = None,
        start_line_after: int | None = None,
        limit: int = 3,
    ) -> list[CodeChunk]:
        candidates = [
            chunk
            for chunk in self.chunks.values()
            if chunk.codebase_id == codebase_id and chunk.file_path == file_path
        ]
        if end_line_before is not None:
            candidates = [chunk for chunk in candidates if chunk.end_line < end_line_before]
        if start_line_after is not None:
            candidates = [chunk for chunk in candidates if chunk.start_line > start_line_after]
        candidates.sort(key=lambda chunk: (chunk.start_line, chunk.end_line))
        if limit <= 0:
            return []
        if end_line_before is not None and start_line_after is None:
            return candidates[-limit:]
        return candidates[:limit]

    async def find_similar_chunks(
        self,
        codebase_id: str,
        query_embedding: list[float],
        limit: int,
        similarity_threshold: float = 0.0,
    ) -> list[SearchResult]:
        scored: list[SearchResult] = []
        for chunk_id, embedding in self.embeddings.items():
            chunk = self.chunks.get(chunk_id)
            if chunk is None or embedding.codebase_id != codebase_id:
                continue
            similarity = self._cosine_similarity(query_embedding, embedding.embedding)
            if similarity < similarity_threshold:
                continue
            scored.append(SearchResult(chunk=chunk, score=similarity, vector_similarity=similarity))
        scored.sort(key=lambda item: (-item.score, item.chunk.file_path, item.chunk.start_line))
        return scored[:limit]

    async def search_chunks(
        self,
        codebase_id: str,
        query: str,
        limit: int,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """Rank chunks with Okapi BM25 over their (enriched) content."""
        terms = set(tokenize(query))
        documents = [chunk for chunk in self.chunks.values() if chunk.codebase_id == codebase_id]
        if not terms or not documents or limit < 1:
            return []
        doc_tokens = [tokenize(chunk.enriched_content or chunk.content) for chunk in documents]
        doc_lens = [len(tokens) for tokens in doc_tokens]
        avgdl = sum(doc_lens) / len(doc_lens)
        if avgdl <= 0:
            return []
        doc_freq = {term: sum(1 for tokens in doc_tokens if term in tokens) for term in terms}

        scored: list[SearchResult] = []
        total_docs = len(documents)
        for chunk, tokens, doc_len in zip(documents, doc_tokens, doc_lens):
            counts = Counter(tokens)
            score = 0.0
            for term in sorted(terms):
                tf = counts.get(term, 0)
                if tf == 0:
                    continue
                n_qi = doc_freq[term]
                idf = math.log(1.0 + ((total_docs - n_qi + 0.5) / (n_qi + 0.5)))
                denom = tf + BM25_K1 * (1.0 - BM25_B + BM25_B * (doc_len / avgdl))
                score += idf * ((tf * (BM25_K1 + 1.0)) / denom)
            if score <= 0 or score < min_score:
                continue
            scored.append(SearchResult(chunk=chunk, score=score, bm25_score=score))
        scored.sort(key=lambda item: (-item.score, item.chunk.file_path, item.chunk.start_line))
        return scored[:limit]

    def _cosine_similarity(self, a: list[float], b: list[float]) -> float:
        """Compute cosine similarity between two vectors."""
        dot = sum(x * y for x, y in zip(a, b))
        norm_a = math.sqrt(sum(x * x for x in a))
        norm_b = math.sqrt(sum(y * y for y in b))
        if norm_a == 0.0 or norm_b == 0.0:
            return 0.0
        return dot / (norm_a * norm_b)
