"""Ingestion pipeline: pages -> sections -> chunks -> vectors -> catalog + index.

Nothing becomes visible to queries until the whole document has been built:
the index receives the full entry set in one `replace_document` call.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace
import hashlib

from sqlalchemy.engine import Engine
import structlog

from studydocs.services.rag import catalog
from studydocs.services.rag.chunker import chunk_sections
from studydocs.services.rag.embedding_client import EmbeddingClientError, EmbeddingProvider
from studydocs.services.rag.structure import StructureBuilder, StructureResult, detect_body_size
from studydocs.services.rag.types import (
    ChunkRecord,
    IndexEntry,
    IngestedDocument,
    IngestionSummary,
    Page,
)
from studydocs.services.rag.vector_index import IndexDimensionError, VectorIndex

logger = structlog.get_logger(__name__)


class IngestionCancelledError(RuntimeError):
    pass


def make_document_id(title: str, text: str) -> str:
    return hashlib.sha256(f"{title}\n{text}".encode("utf-8")).hexdigest()[:16]


async def _build_structure(
    pages: Sequence[Page],
    *,
    heading_sample_pages: int,
    yield_every_pages: int,
    abort: asyncio.Event | None,
) -> StructureResult:
    builder = StructureBuilder(
        body_size=detect_body_size(pages, sample_pages=heading_sample_pages)
    )
    for index, page in enumerate(pages, start=1):
        if abort is not None and abort.is_set():
            raise IngestionCancelledError(f"ingestion aborted before page {page.page_number}")
        builder.feed(page)
        if index % yield_every_pages == 0:
            await asyncio.sleep(0)

    if abort is not None and abort.is_set():
        raise IngestionCancelledError("ingestion aborted after the last page")
    return builder.finish()


async def _embed_chunk(
    chunk: ChunkRecord,
    *,
    embedding_provider: EmbeddingProvider,
    timeout_seconds: float | None,
) -> ChunkRecord:
    try:
        vector = await asyncio.wait_for(
            embedding_provider.embed(chunk.content),
            timeout=timeout_seconds,
        )
    except (EmbeddingClientError, asyncio.TimeoutError) as exc:
        logger.warning(
            "chunk_embedding_failed",
            chunk_id=chunk.chunk_id,
            error=str(exc) or type(exc).__name__,
        )
        return chunk
    except Exception as exc:
        logger.warning(
            "chunk_embedding_failed",
            chunk_id=chunk.chunk_id,
            error=str(exc) or type(exc).__name__,
            exc_info=True,
        )
        return chunk

    try:
        embedding = tuple(float(value) for value in vector)
    except (TypeError, ValueError) as exc:
        logger.warning("chunk_embedding_invalid", chunk_id=chunk.chunk_id, error=str(exc))
        return chunk

    if len(embedding) != embedding_provider.dimensions:
        logger.warning(
            "chunk_embedding_invalid",
            chunk_id=chunk.chunk_id,
            expected=embedding_provider.dimensions,
            actual=len(embedding),
        )
        return chunk

    return replace(chunk, embedding=embedding)


async def embed_chunks(
    chunks: Sequence[ChunkRecord],
    *,
    embedding_provider: EmbeddingProvider,
    batch_size: int = 5,
    timeout_seconds: float | None = None,
    abort: asyncio.Event | None = None,
) -> list[ChunkRecord]:
    if batch_size <= 0:
        raise ValueError("batch_size must be > 0")

    embedded: list[ChunkRecord] = []
    for start in range(0, len(chunks), batch_size):
        if abort is not None and abort.is_set():
            raise IngestionCancelledError("ingestion aborted during embedding")
        batch = chunks[start : start + batch_size]
        embedded.extend(
            await asyncio.gather(
                *(
                    _embed_chunk(
                        chunk,
                        embedding_provider=embedding_provider,
                        timeout_seconds=timeout_seconds,
                    )
                    for chunk in batch
                )
            )
        )
    return embedded


async def ingest_document(
    *,
    title: str,
    pages: Sequence[Page],
    index: VectorIndex,
    embedding_provider: EmbeddingProvider,
    engine: Engine | None = None,
    document_id: str | None = None,
    source_path: str | None = None,
    page_count: int | None = None,
    chunk_size: int = 500,
    overlap_sentences: int = 3,
    heading_sample_pages: int = 5,
    embed_batch_size: int = 5,
    embed_timeout_seconds: float | None = 30.0,
    yield_every_pages: int = 5,
    abort: asyncio.Event | None = None,
) -> IngestionSummary:
    if yield_every_pages <= 0:
        raise ValueError("yield_every_pages must be > 0")
    if index.dimension is not None and index.dimension != embedding_provider.dimensions:
        raise IndexDimensionError(
            f"embedding provider produces {embedding_provider.dimensions}-dimensional vectors, "
            f"index holds {index.dimension}"
        )

    structure = await _build_structure(
        pages,
        heading_sample_pages=heading_sample_pages,
        yield_every_pages=yield_every_pages,
        abort=abort,
    )
    resolved_id = document_id or make_document_id(title, structure.text)
    # pages the loader could not extract never reach the structure builder
    last_page = max((page.page_number for page in pages), default=0)
    total_pages = max(page_count or 0, last_page)
    skipped_pages = structure.skipped_pages + max(0, total_pages - len(pages))

    chunks = chunk_sections(
        resolved_id,
        structure.sections,
        chunk_size=chunk_size,
        overlap_sentences=overlap_sentences,
    )
    embedded = await embed_chunks(
        chunks,
        embedding_provider=embedding_provider,
        batch_size=embed_batch_size,
        timeout_seconds=embed_timeout_seconds,
        abort=abort,
    )

    document = IngestedDocument(
        document_id=resolved_id,
        title=title,
        source_path=source_path,
        text=structure.text,
        page_count=total_pages,
        sections=structure.sections,
        chunks=tuple(embedded),
    )
    if engine is not None:
        await asyncio.to_thread(catalog.save_document, engine, document)

    entries = [
        IndexEntry(
            chunk_id=chunk.chunk_id,
            document_id=resolved_id,
            content=chunk.content,
            vector=chunk.embedding,
            keywords=chunk.keywords,
        )
        for chunk in embedded
        if chunk.embedding is not None
    ]
    index.replace_document(resolved_id, entries)

    summary = IngestionSummary(
        document_id=resolved_id,
        page_count=total_pages,
        skipped_page_count=skipped_pages,
        section_count=len(structure.sections),
        chunk_count=len(embedded),
        embedded_chunk_count=len(entries),
    )
    logger.info(
        "document_ingested",
        document_id=resolved_id,
        title=title,
        pages=summary.page_count,
        skipped_pages=summary.skipped_page_count,
        sections=summary.section_count,
        chunks=summary.chunk_count,
        embedded_chunks=summary.embedded_chunk_count,
    )
    return summary


def remove_document(document_id: str, *, index: VectorIndex, engine: Engine | None = None) -> bool:
    removed = False
    # a failed catalog delete leaves the index untouched
    if engine is not None:
        removed = catalog.delete_document(engine, document_id)
    removed = index.remove_document(document_id) or removed
    if removed:
        logger.info("document_removed", document_id=document_id)
    return removed


def warm_index(engine: Engine, index: VectorIndex) -> int:
    loaded = 0
    for document_id, entries in catalog.load_index_entries(engine).items():
        try:
            index.replace_document(document_id, entries)
        except IndexDimensionError as exc:
            logger.warning("index_warm_skipped", document_id=document_id, error=str(exc))
            continue
        loaded += len(entries)
    logger.info("index_warmed", chunks=loaded, documents=len(index.document_ids()))
    return loaded
