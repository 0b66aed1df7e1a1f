from __future__ import annotations

import os
from dataclasses import dataclass

try:
    from dotenv import load_dotenv
except ImportError:  # pragma: no cover - optional in minimal setups
    load_dotenv = None

if load_dotenv is not None:
    load_dotenv()


@dataclass(frozen=True)
class Settings:
    tokenizer_provider: str = os.getenv("INDEX_TOKENIZER_PROVIDER", "openai")
    tokenizer_model: str | None = os.getenv("INDEX_TOKENIZER_MODEL")
    tokenizer_vocabulary_path: str | None = os.getenv("INDEX_TOKENIZER_VOCABULARY")
    chunk_max_tokens: int = int(os.getenv("INDEX_CHUNK_MAX_TOKENS", "512"))
    chunk_strategy: str = os.getenv("INDEX_CHUNK_STRATEGY", "code_structure")
    cache_max_entries: int = int(os.getenv("INDEX_CACHE_MAX_ENTRIES", "1000"))
    cache_ttl_seconds: float = float(os.getenv("INDEX_CACHE_TTL_SECONDS", "300"))
    metrics_max_stored: int = int(os.getenv("INDEX_METRICS_MAX_STORED", "10000"))
    hybrid_alpha: float = float(os.getenv("INDEX_HYBRID_ALPHA", "0.7"))
    hybrid_fusion: str = os.getenv("INDEX_HYBRID_FUSION", "linear").lower()
    similarity_threshold: float = float(os.getenv("INDEX_SIMILARITY_THRESHOLD", "0.5"))
    search_limit: int = int(os.getenv("INDEX_SEARCH_LIMIT", "10"))
    expander_context_chunks: int = int(os.getenv("INDEX_EXPANDER_CONTEXT_CHUNKS", "3"))
    enrich_enabled: bool = os.getenv("INDEX_ENRICH_ENABLED", "false").lower() in {"1", "true", "yes"}
    enrich_concurrency: int = int(os.getenv("INDEX_ENRICH_CONCURRENCY", "4"))
    embedding_provider: str = os.getenv("EMBEDDING_PROVIDER", "hash")
    embedding_dimension: int = int(os.getenv("EMBEDDING_DIMENSION", "256"))
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_embedding_model: str | None = os.getenv("OPENAI_EMBEDDING_MODEL")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")
    llm_provider: str = os.getenv("INDEX_LLM_PROVIDER", "ollama")
    llm_temperature: float = float(os.getenv("INDEX_LLM_TEMPERATURE", "0.0"))
    llm_max_tokens: int = int(os.getenv("INDEX_LLM_MAX_TOKENS", "128"))
    llm_timeout: float = float(os.getenv("INDEX_LLM_TIMEOUT", "60"))
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    run_db_uri: str | None = os.getenv("INDEX_RUN_DB_URI")
    metrics_enabled: bool = os.getenv("INDEX_METRICS_ENABLED", "true").lower() in {"1", "true", "yes"}
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    max_file_bytes: int = int(os.getenv("INDEX_MAX_FILE_BYTES", "1048576"))


settings = Settings()
