from __future__ import annotations

"""Contextual enrichment tests with a scripted text generator."""

import asyncio

import pytest

from codeindex.rag.compression import CompressionError, CompressionTechnique, MetaTokenCompressor
from codeindex.rag.enrichment import ContextualEnricher, build_chunk_prompt
from codeindex.rag.llm import LLMError
from codeindex.rag.tokens import HeuristicTokenEstimator, TokenizerProvider
from codeindex.rag.types import CodeChunk, Language

ESTIMATOR = HeuristicTokenEstimator(provider=TokenizerProvider.APPLE)


class ScriptedGenerator:
    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
    ) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            marker = prompt.rsplit("Code chunk:\n", 1)[-1].split("\n", 1)[0]
            if self.fail_on and self.fail_on in prompt:
                raise LLMError("generation failed")
            # Earlier chunks finish last so completion order differs from input order.
            await asyncio.sleep(0.01 * (5 - len(self.prompts) % 5))
            return f" summary of {marker} "
        finally:
            self.in_flight -= 1


def make_chunk(content: str) -> CodeChunk:
    return CodeChunk(
        file_id="f1",
        codebase_id="cb",
        file_path="Sources/Cart.swift",
        content=content,
        content_hash=content,
        start_line=1,
        end_line=1,
        chunk_type="function",
        language=Language.SWIFT,
    )


def test_prompt_mentions_file_language_and_context() -> None:
    prompt = build_chunk_prompt(make_chunk("func total() {}"), "Codebase: shop")

    assert "File: Sources/Cart.swift" in prompt
    assert "Programming language: swift" in prompt
    assert "Codebase context:\nCodebase: shop" in prompt
    assert "Codebase context" not in build_chunk_prompt(make_chunk("x"))


@pytest.mark.anyio
async def test_enrich_chunk_prepends_summary() -> None:
    enricher = ContextualEnricher(generator=ScriptedGenerator(), estimator=ESTIMATOR)

    enriched = await enricher.enrich_chunk(make_chunk("func total() {}"))

    assert enriched == "Context: summary of func total() {}\n\nfunc total() {}"


@pytest.mark.anyio
async def test_enrich_chunks_preserves_input_order() -> None:
    enricher = ContextualEnricher(generator=ScriptedGenerator(), estimator=ESTIMATOR)
    chunks = [make_chunk(f"func step{index}() {{}}") for index in range(6)]

    results = await enricher.enrich_chunks(chunks, "Codebase: shop")

    assert [result.original_chunk.id for result in results] == [chunk.id for chunk in chunks]
    assert all(
        result.enriched_content.endswith(result.original_chunk.content) for result in results
    )
    assert await enricher.enrich_chunks([]) == []


@pytest.mark.anyio
async def test_enrich_chunks_respects_concurrency_bound() -> None:
    generator = ScriptedGenerator()
    enricher = ContextualEnricher(generator=generator, estimator=ESTIMATOR, max_concurrency=2)

    await enricher.enrich_chunks([make_chunk(f"func f{index}() {{}}") for index in range(8)])

    assert generator.max_in_flight <= 2
    assert len(generator.prompts) == 8


@pytest.mark.anyio
async def test_enrich_chunks_propagates_failure() -> None:
    enricher = ContextualEnricher(generator=ScriptedGenerator(fail_on="broken"), estimator=ESTIMATOR)
    chunks = [make_chunk("func ok() {}"), make_chunk("func broken() {}")]

    with pytest.raises(LLMError):
        await enricher.enrich_chunks(chunks)


@pytest.mark.anyio
async def test_enrich_chunks_settles_siblings_before_raising() -> None:
    generator = ScriptedGenerator(fail_on="broken")
    enricher = ContextualEnricher(generator=generator, estimator=ESTIMATOR)
    chunks = [
        make_chunk("func slowA() {}"),
        make_chunk("func brokenA() {}"),
        make_chunk("func slowB() {}"),
        make_chunk("func brokenB() {}"),
    ]

    with pytest.raises(LLMError):
        await enricher.enrich_chunks(chunks)

    assert len(generator.prompts) == 4
    assert generator.in_flight == 0


@pytest.mark.anyio
async def test_contextual_compress_round_trip() -> None:
    enricher = ContextualEnricher(generator=ScriptedGenerator(), estimator=ESTIMATOR)
    text = "Orders are totalled per cart.\nDiscounts apply last."

    compressed = await enricher.compress(text, target_ratio=1.2)

    assert compressed.technique == CompressionTechnique.CONTEXTUAL
    assert compressed.compressed_text.startswith("[Context: summary of")
    assert compressed.compressed_text.endswith(text)
    assert compressed.compression_ratio > 1.0
    assert compressed.metadata.parameters["enrichment_type"] == "prepended"
    assert await enricher.decompress(compressed) == text


@pytest.mark.anyio
async def test_contextual_decompress_rejects_meta_token_output() -> None:
    enricher = ContextualEnricher(generator=ScriptedGenerator(), estimator=ESTIMATOR)
    meta = MetaTokenCompressor(estimator=ESTIMATOR).compress("one two three one two three", 0.5)

    with pytest.raises(CompressionError, match="Incompatible technique"):
        await enricher.decompress(meta)
