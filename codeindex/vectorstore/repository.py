from __future__ import annotations

"""Persistence port consumed by indexing, search and context expansion."""

from typing import Protocol

from codeindex.rag.types import CodeChunk, CodeEmbedding, FlatIntegrityNode, SearchResult


class ChunkRepository(Protocol):
    """Async storage port for chunks, embeddings and integrity data."""

    async def save_chunks(self, chunks: list[CodeChunk]) -> list[CodeChunk]:
        raise NotImplementedError

    async def save_embeddings(self, embeddings: list[CodeEmbedding]) -> None:
        raise NotImplementedError

    async def save_integrity_nodes(self, codebase_id: str, nodes: list[FlatIntegrityNode]) -> None:
        raise NotImplementedError

    async def save_integrity_root(self, codebase_id: str, root_hash: str) -> None:
        raise NotImplementedError

    async def update_file_parsed(self, file_id: str, is_parsed: bool, error: str | None = None) -> None:
        raise NotImplementedError

    async def find_chunks_in_file(
        self,
        codebase_id: str,
        file_path: str,
        end_line_before: int | None = None,
        start_line_after: int | None = None,
        limit: int = 3,
    ) -> list[CodeChunk]:
        """Return chunks of one file that end before or start after a line.

        Results are the ``limit`` chunks nearest to the boundary, ordered by
        start line.
        """
        raise NotImplementedError

    async def find_similar_chunks(
        self,
        codebase_id: str,
        query_embedding: list[float],
        limit: int,
        similarity_threshold: float = 0.0,
    ) -> list[SearchResult]:
        raise NotImplementedError

    async def search_chunks(
        self,
        codebase_id: str,
        query: str,
        limit: int,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        raise NotImplementedError
