from dataclasses import dataclass
from functools import lru_cache
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    log_level: str
    json_logs: bool
    rag_chunk_size: int
    rag_overlap_sentences: int
    rag_heading_sample_pages: int
    rag_yield_every_pages: int
    rag_embed_batch_size: int
    rag_embedding_provider: str
    rag_embedding_dim: int
    rag_context_max_chars: int
    ollama_base_url: str
    ollama_embed_model: str
    ollama_model: str
    ollama_fallback_model: str
    ollama_timeout_seconds: float
    ollama_max_attempts: int
    ollama_retry_wait_seconds: float


@lru_cache
def get_settings() -> Settings:
    embedding_provider = os.getenv("RAG_EMBEDDING_PROVIDER", "ollama").strip().lower()
    if embedding_provider not in {"ollama", "hash"}:
        raise ValueError(
            f"RAG_EMBEDDING_PROVIDER must be 'ollama' or 'hash', got {embedding_provider!r}"
        )

    return Settings(
        database_url=os.getenv(
            "STUDYDOCS_DATABASE_URL",
            "sqlite+pysqlite:///data/studydocs.db",
        ),
        db_echo=_to_bool(os.getenv("STUDYDOCS_DB_ECHO"), default=False),
        log_level=os.getenv("STUDYDOCS_LOG_LEVEL", "INFO"),
        json_logs=_to_bool(os.getenv("STUDYDOCS_JSON_LOGS"), default=True),
        rag_chunk_size=_to_int(os.getenv("RAG_CHUNK_SIZE"), default=500, minimum=50),
        rag_overlap_sentences=_to_int(os.getenv("RAG_OVERLAP_SENTENCES"), default=3, minimum=0),
        rag_heading_sample_pages=_to_int(
            os.getenv("RAG_HEADING_SAMPLE_PAGES"), default=5, minimum=1
        ),
        rag_yield_every_pages=_to_int(os.getenv("RAG_YIELD_EVERY_PAGES"), default=5, minimum=1),
        rag_embed_batch_size=_to_int(os.getenv("RAG_EMBED_BATCH_SIZE"), default=5, minimum=1),
        rag_embedding_provider=embedding_provider,
        rag_embedding_dim=_to_int(os.getenv("RAG_EMBEDDING_DIM"), default=768, minimum=8),
        rag_context_max_chars=_to_int(
            os.getenv("RAG_CONTEXT_MAX_CHARS"), default=15000, minimum=500
        ),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1"),
        ollama_embed_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
        ollama_model=os.getenv("OLLAMA_MODEL", "llama3"),
        ollama_fallback_model=os.getenv("OLLAMA_FALLBACK_MODEL", "llama3.2:3b"),
        ollama_timeout_seconds=_to_float(
            os.getenv("OLLAMA_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
        ollama_max_attempts=_to_int(os.getenv("OLLAMA_MAX_ATTEMPTS"), default=3, minimum=1),
        ollama_retry_wait_seconds=_to_float(
            os.getenv("OLLAMA_RETRY_WAIT_SECONDS"), default=1.0, minimum=0.0
        ),
    )
