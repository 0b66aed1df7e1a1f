from __future__ import annotations

"""Indexing pipeline: parse, enrich, embed and persist source files."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from codeindex.app.metrics import record_indexed_file
from codeindex.loaders.imports import extract_imports
from codeindex.loaders.parser import CodeParser
from codeindex.metadata.store import IndexRunStore
from codeindex.rag.embeddings import EmbeddingError, EmbeddingProvider
from codeindex.rag.enrichment import ContextualEnricher
from codeindex.rag.integrity import build_integrity_tree, content_hash, flatten_integrity_tree
from codeindex.rag.types import CodeChunk, CodeEmbedding, Language, SourceFile
from codeindex.vectorstore.repository import ChunkRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class FileIndexingError:
    """Failure recorded against a single file; the batch carries on."""
    file_id: str
    file_path: str
    error: str


@dataclass(frozen=True)
class IndexingReport:
    codebase_id: str
    total_files: int
    indexed_files: int
    chunk_count: int
    root_hash: str
    languages: list[str] = field(default_factory=list)
    frameworks: list[str] = field(default_factory=list)
    errors: list[FileIndexingError] = field(default_factory=list)
    run_id: str | None = None

    @property
    def failed_files(self) -> int:
        return len(self.errors)


def detect_languages(files: Sequence[SourceFile]) -> list[str]:
    return sorted({file.language.value for file in files if file.language != Language.UNKNOWN})


def detect_frameworks(imports: Sequence[str]) -> list[str]:
    """Top-level module names of imports, e.g. ``Foundation`` or ``os``."""
    return sorted({name.split(".", 1)[0] for name in imports if name.split(".", 1)[0]})


def build_codebase_context(codebase_id: str, languages: list[str], frameworks: list[str]) -> str:
    context = f"Codebase: {codebase_id}"
    if languages:
        context += f"\nLanguages: {', '.join(languages)}"
    if frameworks:
        context += f"\nFrameworks: {', '.join(frameworks)}"
    return context


@dataclass
class IndexingPipeline:
    """Index a batch of files for one codebase.

    Files are processed one at a time so a failure can be recorded against
    the offending file without losing the rest of the batch. Chunks,
    embeddings and the integrity tree are persisted once all files ran.
    """
    parser: CodeParser
    embedder: EmbeddingProvider
    repository: ChunkRepository
    max_tokens: int = 512
    enricher: ContextualEnricher | None = None
    run_store: IndexRunStore | None = None

    async def run(
        self,
        codebase_id: str,
        files: Sequence[SourceFile],
        progress: ProgressCallback | None = None,
    ) -> IndexingReport:
        run_id = self.run_store.record_start(codebase_id, len(files)) if self.run_store else None
        try:
            report = await self._run(codebase_id, files, progress, run_id)
        except Exception as exc:
            if self.run_store is not None and run_id is not None:
                self.run_store.record_failure(run_id, str(exc))
            logger.exception("indexing_failed", extra={"codebase_id": codebase_id})
            raise
        if self.run_store is not None and run_id is not None:
            self.run_store.record_complete(
                run_id,
                indexed_files=report.indexed_files,
                failed_files=report.failed_files,
                chunk_count=report.chunk_count,
                root_hash=report.root_hash,
            )
        return report

    async def _run(
        self,
        codebase_id: str,
        files: Sequence[SourceFile],
        progress: ProgressCallback | None,
        run_id: str | None,
    ) -> IndexingReport:
        languages = detect_languages(files)
        frameworks = detect_frameworks(
            [name for file in files for name in extract_imports(file.content, file.extension)]
        )
        codebase_context = build_codebase_context(codebase_id, languages, frameworks)

        all_chunks: list[CodeChunk] = []
        all_embeddings: list[CodeEmbedding] = []
        errors: list[FileIndexingError] = []
        indexed = 0
        for position, file in enumerate(files, start=1):
            try:
                chunks, embeddings = await self._index_file(codebase_id, file, codebase_context)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                errors.append(FileIndexingError(file_id=file.id, file_path=file.path, error=message))
                await self.repository.update_file_parsed(file.id, False, error=message)
                self._record_file(run_id, file.path, "failed", 0, message)
                logger.warning(
                    "file_indexing_failed",
                    extra={"path": file.path, "error_type": type(exc).__name__},
                )
            else:
                all_chunks.extend(chunks)
                all_embeddings.extend(embeddings)
                indexed += 1
                await self.repository.update_file_parsed(file.id, True)
                self._record_file(run_id, file.path, "indexed", len(chunks), None)
            if progress is not None:
                progress(position / len(files))

        saved = await self.repository.save_chunks(all_chunks)
        await self.repository.save_embeddings(all_embeddings)
        tree = build_integrity_tree(saved)
        if tree.root_node is not None:
            await self.repository.save_integrity_nodes(codebase_id, flatten_integrity_tree(tree.root_node))
            await self.repository.save_integrity_root(codebase_id, tree.root_hash)

        logger.info(
            "codebase_indexed",
            extra={
                "codebase_id": codebase_id,
                "files": len(files),
                "failed": len(errors),
                "chunks": len(saved),
            },
        )
        return IndexingReport(
            codebase_id=codebase_id,
            total_files=len(files),
            indexed_files=indexed,
            chunk_count=len(saved),
            root_hash=tree.root_hash,
            languages=languages,
            frameworks=frameworks,
            errors=errors,
            run_id=run_id,
        )

    async def _index_file(
        self,
        codebase_id: str,
        file: SourceFile,
        codebase_context: str,
    ) -> tuple[list[CodeChunk], list[CodeEmbedding]]:
        parsed = self.parser.parse_code(file.content, file.path, self.max_tokens)
        chunks = [
            CodeChunk(
                file_id=file.id,
                codebase_id=codebase_id,
                file_path=file.path,
                content=item.content,
                content_hash=content_hash(item.content),
                start_line=item.start_line,
                end_line=item.end_line,
                chunk_type=item.type,
                language=file.language,
                symbols=list(item.symbols),
                imports=list(item.imports),
                token_count=item.token_count,
            )
            for item in parsed
        ]
        if not chunks:
            return [], []

        if self.enricher is not None:
            enriched = await self.enricher.enrich_chunks(chunks, codebase_context)
            chunks = [
                CodeChunk(
                    file_id=chunk.file_id,
                    codebase_id=chunk.codebase_id,
                    file_path=chunk.file_path,
                    content=chunk.content,
                    content_hash=chunk.content_hash,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    chunk_type=chunk.chunk_type,
                    language=chunk.language,
                    symbols=chunk.symbols,
                    imports=chunk.imports,
                    token_count=chunk.token_count,
                    enriched_content=item.enriched_content,
                    id=chunk.id,
                )
                for chunk, item in zip(chunks, enriched)
            ]

        texts = [chunk.enriched_content or chunk.content for chunk in chunks]
        vectors = await asyncio.to_thread(self.embedder.embed_many, texts)
        if len(vectors) != len(chunks):
            raise EmbeddingError(f"Expected {len(chunks)} embeddings, received {len(vectors)}")
        embeddings = [
            CodeEmbedding(
                chunk_id=chunk.id,
                codebase_id=codebase_id,
                embedding=vector,
                model=self.embedder.model,
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        return chunks, embeddings

    def _record_file(
        self,
        run_id: str | None,
        file_path: str,
        status: str,
        chunk_count: int,
        error: str | None,
    ) -> None:
        record_indexed_file(status, chunk_count)
        if self.run_store is not None and run_id is not None:
            self.run_store.record_file(run_id, file_path, status, chunk_count=chunk_count, error=error)
