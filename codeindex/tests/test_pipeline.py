from __future__ import annotations

"""Indexing pipeline tests."""

import pytest

from codeindex.loaders.parser import CodeParser
from codeindex.metadata.store import IndexRunStore
from codeindex.rag.embeddings import EmbeddingError, HashEmbedder
from codeindex.rag.enrichment import ContextualEnricher
from codeindex.rag.integrity import verify_integrity
from codeindex.rag.pipeline import (
    IndexingPipeline,
    build_codebase_context,
    detect_frameworks,
)
from codeindex.rag.tokens import HeuristicTokenEstimator, TokenizerProvider
from codeindex.rag.types import SourceFile
from codeindex.vectorstore.inmemory import InMemoryChunkRepository

ESTIMATOR = HeuristicTokenEstimator(provider=TokenizerProvider.APPLE)

CART = SourceFile(
    path="Sources/Cart.swift",
    content="import Foundation\n\nstruct Cart {\n    var items: [Item]\n}\n\nfunc total(cart: Cart) -> Int {\n    return 0\n}\n",
)
UTILS = SourceFile(
    path="scripts/utils.py",
    content="import os\n\n\ndef home():\n    return os.environ['HOME']\n",
)
BROKEN = SourceFile(path="Sources/Broken.swift", content="func explode() {\n}\n")


class SelectiveEmbedder(HashEmbedder):
    """Hash embedder that refuses texts containing a marker."""

    def embed_many(self, texts: list[str]) -> list[list[float]]:
        if any("explode" in text for text in texts):
            raise EmbeddingError("embedding backend rejected input")
        return super().embed_many(texts)


class ScriptedGenerator:
    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def generate(self, prompt: str, system_prompt: str | None = None, temperature: float | None = None) -> str:
        self.prompts.append(prompt)
        return "Part of the shop module."


def build_pipeline(repository, **kwargs) -> IndexingPipeline:
    return IndexingPipeline(
        parser=CodeParser(estimator=ESTIMATOR),
        embedder=kwargs.pop("embedder", HashEmbedder()),
        repository=repository,
        **kwargs,
    )


@pytest.mark.anyio
async def test_pipeline_indexes_files_and_builds_integrity_tree() -> None:
    repository = InMemoryChunkRepository()
    pipeline = build_pipeline(repository)

    report = await pipeline.run("shop", [CART, UTILS])

    assert report.total_files == 2
    assert report.indexed_files == 2
    assert report.failed_files == 0
    assert report.languages == ["python", "swift"]
    assert report.frameworks == ["Foundation", "os"]
    assert report.chunk_count == len(repository.chunks) > 0
    assert len(repository.embeddings) == report.chunk_count
    assert repository.integrity_roots["shop"] == report.root_hash
    assert verify_integrity(list(repository.chunks.values()), report.root_hash)
    assert all(status.is_parsed for status in repository.file_status.values())

    cart_chunks = [chunk for chunk in repository.chunks.values() if chunk.file_path == CART.path]
    assert {symbol for chunk in cart_chunks for symbol in chunk.symbols} == {"Cart", "total"}
    assert all(chunk.imports == ["Foundation"] for chunk in cart_chunks)
    assert all(chunk.codebase_id == "shop" for chunk in cart_chunks)


@pytest.mark.anyio
async def test_pipeline_recovers_from_per_file_failure() -> None:
    repository = InMemoryChunkRepository()
    pipeline = build_pipeline(repository, embedder=SelectiveEmbedder())
    progress: list[float] = []

    report = await pipeline.run("shop", [CART, BROKEN, UTILS], progress=progress.append)

    assert report.indexed_files == 2
    assert report.failed_files == 1
    assert report.errors[0].file_path == BROKEN.path
    assert "rejected" in report.errors[0].error
    assert repository.file_status[BROKEN.id].is_parsed is False
    assert repository.file_status[BROKEN.id].error == report.errors[0].error
    assert repository.file_status[CART.id].is_parsed is True
    assert all(chunk.file_path != BROKEN.path for chunk in repository.chunks.values())
    assert progress == [1 / 3, 2 / 3, 1.0]


@pytest.mark.anyio
async def test_pipeline_enriches_chunks_before_embedding() -> None:
    repository = InMemoryChunkRepository()
    generator = ScriptedGenerator()
    enricher = ContextualEnricher(generator=generator, estimator=ESTIMATOR)
    pipeline = build_pipeline(repository, enricher=enricher)

    await pipeline.run("shop", [CART])

    assert repository.chunks
    for chunk in repository.chunks.values():
        assert chunk.enriched_content == f"Context: Part of the shop module.\n\n{chunk.content}"
    assert all("Codebase: shop\nLanguages: swift\nFrameworks: Foundation" in prompt for prompt in generator.prompts)


@pytest.mark.anyio
async def test_pipeline_with_no_files_saves_no_root() -> None:
    repository = InMemoryChunkRepository()

    report = await build_pipeline(repository).run("empty", [])

    assert report.root_hash == ""
    assert report.chunk_count == 0
    assert repository.integrity_roots == {}


@pytest.mark.anyio
async def test_pipeline_records_runs(tmp_path) -> None:
    store = IndexRunStore(f"sqlite:///{tmp_path / 'runs.db'}")
    pipeline = build_pipeline(InMemoryChunkRepository(), embedder=SelectiveEmbedder(), run_store=store)

    report = await pipeline.run("shop", [CART, BROKEN])

    run = store.latest_run("shop")
    assert run is not None
    assert run.id == report.run_id
    assert run.status == "completed"
    assert (run.total_files, run.indexed_files, run.failed_files) == (2, 1, 1)
    assert run.root_hash == report.root_hash
    results = store.file_results(run.id)
    assert [(result.file_path, result.status) for result in results] == [
        (BROKEN.path, "failed"),
        (CART.path, "indexed"),
    ]


def test_codebase_context_helpers() -> None:
    assert detect_frameworks(["Foundation", "os.path", "os", "UIKit.UIView"]) == ["Foundation", "UIKit", "os"]
    assert build_codebase_context("shop", [], []) == "Codebase: shop"
