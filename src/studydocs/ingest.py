from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

from studydocs.config import get_settings
from studydocs.db import create_catalog_engine, create_schema
from studydocs.logging_config import configure_logging
from studydocs.services.rag.embedder import HashEmbeddingProvider
from studydocs.services.rag.embedding_client import EmbeddingProvider, OllamaEmbeddingClient
from studydocs.services.rag.ingest import ingest_document, warm_index
from studydocs.services.rag.loader import load_document
from studydocs.services.rag.types import IngestionSummary
from studydocs.services.rag.vector_index import InMemoryVectorIndex


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="studydocs-ingest",
        description="Ingest PDF and text documents into the studydocs catalog",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        type=Path,
        help="Source files (.pdf, .txt, .md)",
    )
    parser.add_argument(
        "--title",
        default=None,
        help="Document title (only valid with a single path; defaults to the file name)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.rag_chunk_size,
        help="Target chunk size in characters",
    )
    parser.add_argument(
        "--overlap-sentences",
        type=int,
        default=settings.rag_overlap_sentences,
        help="Trailing sentences repeated at the start of the next chunk",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy URL of the document catalog",
    )
    return parser


def _embedding_provider() -> EmbeddingProvider:
    settings = get_settings()
    if settings.rag_embedding_provider == "hash":
        return HashEmbeddingProvider(dimensions=settings.rag_embedding_dim)
    return OllamaEmbeddingClient(
        base_url=settings.ollama_base_url,
        model=settings.ollama_embed_model,
        dimensions=settings.rag_embedding_dim,
        timeout_seconds=settings.ollama_timeout_seconds,
        max_attempts=settings.ollama_max_attempts,
        retry_wait_seconds=settings.ollama_retry_wait_seconds,
    )


async def ingest_paths(
    paths: list[Path],
    *,
    database_url: str,
    chunk_size: int,
    overlap_sentences: int,
    title: str | None = None,
    embedding_provider: EmbeddingProvider | None = None,
) -> list[IngestionSummary]:
    if title is not None and len(paths) != 1:
        raise ValueError("--title can only be used with a single path")

    settings = get_settings()
    provider = embedding_provider or _embedding_provider()
    engine = create_catalog_engine(database_url, echo=settings.db_echo)
    create_schema(engine)

    # warm so dimension mismatches against stored vectors are caught early
    index = InMemoryVectorIndex()
    warm_index(engine, index)

    summaries: list[IngestionSummary] = []
    try:
        for path in paths:
            source = load_document(path)
            summaries.append(
                await ingest_document(
                    title=title or path.stem,
                    pages=source.pages,
                    index=index,
                    embedding_provider=provider,
                    engine=engine,
                    source_path=str(path),
                    page_count=source.page_count,
                    chunk_size=chunk_size,
                    overlap_sentences=overlap_sentences,
                    heading_sample_pages=settings.rag_heading_sample_pages,
                    embed_batch_size=settings.rag_embed_batch_size,
                    embed_timeout_seconds=settings.ollama_timeout_seconds,
                    yield_every_pages=settings.rag_yield_every_pages,
                )
            )
    finally:
        engine.dispose()

    return summaries


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    try:
        summaries = asyncio.run(
            ingest_paths(
                args.paths,
                database_url=args.database_url,
                chunk_size=args.chunk_size,
                overlap_sentences=args.overlap_sentences,
                title=args.title,
            )
        )
    except Exception as exc:
        print(f"[studydocs-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    for path, summary in zip(args.paths, summaries):
        print(
            "[studydocs-ingest] completed "
            f"path={path} "
            f"document_id={summary.document_id} "
            f"pages={summary.page_count} "
            f"sections={summary.section_count} "
            f"chunks={summary.chunk_count} "
            f"embedded={summary.embedded_chunk_count}",
            flush=True,
        )


if __name__ == "__main__":
    main()
