from __future__ import annotations

import logging
from functools import lru_cache

from codeindex.app.metrics import RAGMetricsCollector
from codeindex.app.settings import settings
from codeindex.loaders.chunking import ChunkingError, build_chunker
from codeindex.loaders.parser import CodeParser
from codeindex.metadata.store import IndexRunStore
from codeindex.rag.embeddings import EmbeddingProvider, build_embedder
from codeindex.rag.enrichment import ContextualEnricher
from codeindex.rag.expander import ChunkExpander, ContextRetriever
from codeindex.rag.hybrid import FusionMethod, HybridSearchService
from codeindex.rag.llm import OllamaTextGenerator, OpenAITextGenerator, build_text_generator
from codeindex.rag.pipeline import IndexingPipeline
from codeindex.rag.tokens import TokenEstimator, build_token_estimator
from codeindex.rag.types import ChunkingStrategy
from codeindex.vectorstore.cache import SearchCache
from codeindex.vectorstore.inmemory import InMemoryChunkRepository

logger = logging.getLogger(__name__)


@lru_cache
def get_token_estimator() -> TokenEstimator:
    return build_token_estimator(
        settings.tokenizer_provider,
        model=settings.tokenizer_model,
        vocabulary_path=settings.tokenizer_vocabulary_path,
    )


@lru_cache
def get_parser() -> CodeParser:
    chunker = build_chunker(settings.chunk_strategy, get_token_estimator())
    if chunker.strategy == ChunkingStrategy.HIERARCHICAL:
        raise ChunkingError("INDEX_CHUNK_STRATEGY=hierarchical cannot be used to parse code files")
    return CodeParser(estimator=get_token_estimator(), chunker=chunker)


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return build_embedder(
        settings.embedding_provider,
        dimension=settings.embedding_dimension,
        openai_api_key=settings.openai_api_key,
        openai_model=settings.openai_embedding_model,
    )


@lru_cache
def get_repository() -> InMemoryChunkRepository:
    return InMemoryChunkRepository()


@lru_cache
def get_search_cache() -> SearchCache:
    return SearchCache(
        max_entries=settings.cache_max_entries,
        default_ttl=settings.cache_ttl_seconds,
    )


@lru_cache
def get_metrics_collector() -> RAGMetricsCollector:
    return RAGMetricsCollector(max_stored_metrics=settings.metrics_max_stored)


@lru_cache
def get_run_store() -> IndexRunStore | None:
    if not settings.run_db_uri:
        return None
    logger.info("index_run_store_enabled", extra={"uri": IndexRunStore.redact_uri(settings.run_db_uri)})
    return IndexRunStore(settings.run_db_uri)


def build_generator() -> OllamaTextGenerator | OpenAITextGenerator:
    return build_text_generator(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )


def get_enricher() -> ContextualEnricher | None:
    if not settings.enrich_enabled:
        return None
    return ContextualEnricher(
        generator=build_generator(),
        estimator=get_token_estimator(),
        max_concurrency=settings.enrich_concurrency,
    )


@lru_cache
def get_pipeline() -> IndexingPipeline:
    return IndexingPipeline(
        parser=get_parser(),
        embedder=get_embedder(),
        repository=get_repository(),
        max_tokens=settings.chunk_max_tokens,
        enricher=get_enricher(),
        run_store=get_run_store(),
    )


@lru_cache
def get_search_service() -> HybridSearchService:
    return HybridSearchService(
        repository=get_repository(),
        embedder=get_embedder(),
        cache=get_search_cache(),
        metrics=get_metrics_collector(),
        alpha=settings.hybrid_alpha,
        fusion=FusionMethod(settings.hybrid_fusion),
    )


@lru_cache
def get_context_retriever() -> ContextRetriever:
    return ContextRetriever(
        search_service=get_search_service(),
        expander=ChunkExpander(
            repository=get_repository(),
            context_chunks=settings.expander_context_chunks,
        ),
        metrics=get_metrics_collector(),
    )


def reset_dependency_caches() -> None:
    for factory in (
        get_token_estimator,
        get_parser,
        get_embedder,
        get_repository,
        get_search_cache,
        get_metrics_collector,
        get_run_store,
        get_pipeline,
        get_search_service,
        get_context_retriever,
    ):
        factory.cache_clear()
