from __future__ import annotations

"""Expand retrieved chunks with neighbouring chunks from the same file."""

import asyncio
import time
import uuid
from dataclasses import dataclass

from codeindex.app.metrics import RAGMetricsCollector, RetrievalMetric
from codeindex.rag.hybrid import HybridSearchService
from codeindex.rag.types import CodeChunk, ExpandedChunk, SurroundingChunks
from codeindex.vectorstore.repository import ChunkRepository

PREVIOUS_MARKER = "// ... previous context"
MAIN_START_MARKER = "// >>> MAIN CONTEXT <<<"
MAIN_END_MARKER = "// <<< MAIN CONTEXT >>>"
FOLLOWING_MARKER = "// ... following context"


def build_full_context(main_chunk: CodeChunk, surrounding: SurroundingChunks) -> str:
    lines: list[str] = []
    if surrounding.before:
        lines.append(PREVIOUS_MARKER)
        lines.extend(chunk.content for chunk in surrounding.before)
    lines.append(MAIN_START_MARKER)
    lines.append(main_chunk.content)
    lines.append(MAIN_END_MARKER)
    if surrounding.after:
        lines.extend(chunk.content for chunk in surrounding.after)
        lines.append(FOLLOWING_MARKER)
    return "\n".join(lines)


@dataclass
class ChunkExpander:
    """Attach up to ``context_chunks`` neighbours on each side of a chunk."""
    repository: ChunkRepository
    context_chunks: int = 3

    async def expand(self, chunk: CodeChunk) -> ExpandedChunk:
        before, after = await asyncio.gather(
            self.repository.find_chunks_in_file(
                chunk.codebase_id,
                chunk.file_path,
                end_line_before=chunk.start_line,
                limit=self.context_chunks,
            ),
            self.repository.find_chunks_in_file(
                chunk.codebase_id,
                chunk.file_path,
                start_line_after=chunk.end_line,
                limit=self.context_chunks,
            ),
        )
        surrounding = SurroundingChunks(before=list(before), after=list(after))
        return ExpandedChunk(
            main_chunk=chunk,
            surrounding=surrounding,
            full_context=build_full_context(chunk, surrounding),
            expanded_start_line=surrounding.before[0].start_line if surrounding.before else chunk.start_line,
            expanded_end_line=surrounding.after[-1].end_line if surrounding.after else chunk.end_line,
        )

    async def expand_batch(self, chunks: list[CodeChunk]) -> list[ExpandedChunk]:
        """Expand chunks concurrently, preserving input order."""
        return list(await asyncio.gather(*(self.expand(chunk) for chunk in chunks)))


@dataclass
class ContextRetriever:
    """Search then expand, recording one retrieval metric per call."""
    search_service: HybridSearchService
    expander: ChunkExpander
    metrics: RAGMetricsCollector | None = None

    async def retrieve(
        self,
        scope_id: str,
        query: str,
        limit: int = 10,
        threshold: float = 0.5,
    ) -> list[ExpandedChunk]:
        started = time.perf_counter()
        results = await self.search_service.search(scope_id, query, limit=limit, threshold=threshold)
        expanded = await self.expander.expand_batch([result.chunk for result in results])
        if self.metrics is not None:
            self.metrics.record_retrieval(
                RetrievalMetric(
                    timestamp=time.time(),
                    query_id=str(uuid.uuid4()),
                    latency=time.perf_counter() - started,
                    context_size=sum(len(item.full_context) for item in expanded),
                    stages_executed=["hybrid_search", "expansion"],
                )
            )
        return expanded
