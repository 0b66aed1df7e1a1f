from __future__ import annotations

"""LLM-generated context summaries prepended to chunks before embedding."""

import asyncio
import logging
from dataclasses import dataclass, field

from codeindex.rag.compression import (
    CompressedContext,
    CompressionError,
    CompressionMetadata,
    CompressionTechnique,
    compression_ratio,
)
from codeindex.rag.llm import TextGenerator
from codeindex.rag.tokens import TokenEstimator
from codeindex.rag.types import CodeChunk, EnrichedChunk

logger = logging.getLogger(__name__)

_CHUNK_PROMPT_HEADER = (
    "You are analyzing a code chunk from a codebase. "
    "Generate a concise 1-2 sentence summary explaining:\n"
    "1. What this code does\n"
    "2. Its role/purpose within the larger codebase\n\n"
    "Keep the summary under 50 tokens. Be specific and technical.\n"
)

_TEXT_PROMPT = (
    "Generate a succinct context (1-2 sentences) for this chunk.\n"
    "The context should describe what the chunk is about without repeating its content.\n\n"
    "Chunk:\n{chunk}\n\n"
    "Output only the context, no preamble."
)

_TEXT_PROMPT_MAX_CHARS = 500


def build_chunk_prompt(chunk: CodeChunk, codebase_context: str | None = None) -> str:
    """Return the summarization prompt for a code chunk."""
    prompt = _CHUNK_PROMPT_HEADER
    if codebase_context:
        prompt += f"\nCodebase context:\n{codebase_context}\n"
    prompt += (
        f"\nFile: {chunk.file_path}\n"
        f"Programming language: {chunk.language.value}\n\n"
        f"Code chunk:\n{chunk.content}\n\n"
        "Context summary:"
    )
    return prompt


@dataclass
class ContextualEnricher:
    """Prepend a generated summary to chunks to sharpen retrieval.

    ``max_concurrency`` bounds in-flight generation calls for batch
    enrichment; zero or None leaves the fan-out unbounded.
    """
    generator: TextGenerator
    estimator: TokenEstimator
    max_concurrency: int | None = None
    technique: CompressionTechnique = field(init=False, default=CompressionTechnique.CONTEXTUAL)

    async def enrich_chunk(self, chunk: CodeChunk, codebase_context: str | None = None) -> str:
        summary = await self.generator.generate(
            build_chunk_prompt(chunk, codebase_context),
            temperature=0.0,
        )
        return f"Context: {summary.strip()}\n\n{chunk.content}"

    async def enrich_chunks(
        self,
        chunks: list[CodeChunk],
        codebase_context: str | None = None,
    ) -> list[EnrichedChunk]:
        """Enrich chunks concurrently; results keep the input order.

        The first failure cancels the remaining calls and propagates.
        """
        if not chunks:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        async def _enrich(index: int, chunk: CodeChunk) -> tuple[int, EnrichedChunk]:
            if semaphore is None:
                content = await self.enrich_chunk(chunk, codebase_context)
            else:
                async with semaphore:
                    content = await self.enrich_chunk(chunk, codebase_context)
            return index, EnrichedChunk(original_chunk=chunk, enriched_content=content)

        tasks = [asyncio.ensure_future(_enrich(index, chunk)) for index, chunk in enumerate(chunks)]
        try:
            results = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        logger.info("chunks_enriched", extra={"count": len(results)})
        return [enriched for _, enriched in sorted(results, key=lambda item: item[0])]

    async def compress(self, text: str, target_ratio: float) -> CompressedContext:
        """Prepend a bracketed context line to free text."""
        summary = await self.generator.generate(
            _TEXT_PROMPT.format(chunk=text[:_TEXT_PROMPT_MAX_CHARS]),
            temperature=0.1,
        )
        context = f"[Context: {summary.strip()}]"
        enriched = f"{context}\n\n{text}"
        original_tokens = self.estimator.count_tokens(text)
        enriched_tokens = self.estimator.count_tokens(enriched)
        ratio = compression_ratio(original_tokens, enriched_tokens)
        return CompressedContext(
            compressed_text=enriched,
            original_token_count=original_tokens,
            compressed_token_count=enriched_tokens,
            compression_ratio=ratio,
            technique=self.technique,
            metadata=CompressionMetadata(
                technique=self.technique,
                original_tokens=original_tokens,
                compressed_tokens=enriched_tokens,
                compression_ratio=ratio,
                quality_score=0.95,
                parameters={
                    "context_length": str(len(context)),
                    "enrichment_type": "prepended",
                    "target_ratio": str(target_ratio),
                },
            ),
        )

    async def decompress(self, compressed: CompressedContext) -> str:
        """Strip the prepended context and return the original text."""
        if compressed.technique != self.technique:
            raise CompressionError(
                f"Incompatible technique: expected {self.technique.value}, found {compressed.technique.value}"
            )
        raw_length = compressed.metadata.parameters.get("context_length")
        if raw_length is None:
            raise CompressionError("Missing metadata: context length not found")
        return compressed.compressed_text[int(raw_length) + 2 :]
