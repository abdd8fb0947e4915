from __future__ import annotations

import asyncio

import structlog

from studydocs.services.rag.embedding_client import (
    EmbeddingClientError,
    EmbeddingProvider,
    zero_vector,
)
from studydocs.services.rag.types import QueryHit
from studydocs.services.rag.vector_index import VectorIndex

logger = structlog.get_logger(__name__)


async def embed_query(
    query_text: str,
    *,
    embedding_provider: EmbeddingProvider,
    timeout_seconds: float | None = None,
) -> list[float]:
    try:
        return await asyncio.wait_for(
            embedding_provider.embed(query_text),
            timeout=timeout_seconds,
        )
    except (EmbeddingClientError, asyncio.TimeoutError) as exc:
        logger.warning("query_embedding_failed", error=str(exc) or type(exc).__name__)
        return zero_vector(embedding_provider.dimensions)
    except Exception as exc:
        logger.warning(
            "query_embedding_failed",
            error=str(exc) or type(exc).__name__,
            exc_info=True,
        )
        return zero_vector(embedding_provider.dimensions)


async def search_chunks(
    query_text: str,
    *,
    index: VectorIndex,
    embedding_provider: EmbeddingProvider,
    top_k: int = 3,
    document_id: str | None = None,
    timeout_seconds: float | None = None,
) -> list[QueryHit]:
    normalized_query = query_text.strip()
    if not normalized_query:
        raise ValueError("query_text must not be empty")

    if len(index) == 0:
        return []

    query_vector = await embed_query(
        normalized_query,
        embedding_provider=embedding_provider,
        timeout_seconds=timeout_seconds,
    )
    return index.search(query_vector, top_k, document_id)
