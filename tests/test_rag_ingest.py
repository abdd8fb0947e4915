import asyncio
from pathlib import Path

import pytest

from studydocs.db import create_catalog_engine, create_schema
from studydocs.services.rag import catalog
from studydocs.services.rag.embedding_client import EmbeddingClientError
from studydocs.services.rag.ingest import (
    IngestionCancelledError,
    embed_chunks,
    ingest_document,
    make_document_id,
    remove_document,
    warm_index,
)
from studydocs.services.rag.query import search_chunks
from studydocs.services.rag.types import ChunkRecord, IndexEntry, Page, TextRun
from studydocs.services.rag.vector_index import IndexDimensionError, InMemoryVectorIndex


class FakeEmbeddingProvider:
    dimensions = 2

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        normalized = text.lower()
        return [
            float(normalized.count("cell") + normalized.count("membrane")),
            float(normalized.count("gene") + normalized.count("dna")),
        ]

    def is_available(self) -> bool:
        return True


class FlakyEmbeddingProvider(FakeEmbeddingProvider):
    async def embed(self, text: str) -> list[float]:
        if "poison" in text.lower():
            raise EmbeddingClientError("backend rejected chunk")
        if "slow" in text.lower():
            await asyncio.sleep(5)
        if "short" in text.lower():
            return [1.0]
        return await super().embed(text)


class ConcurrencyTrackingProvider(FakeEmbeddingProvider):
    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.peak = 0

    async def embed(self, text: str) -> list[float]:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        return [1.0, 0.0]


def _pages(*extra_body: str) -> list[Page]:
    page_one = [
        TextRun(text="Cell Biology", x=72, y=700, height=24),
        TextRun(
            text="The cell membrane controls transport. Membrane proteins move ions.",
            x=72,
            y=680,
            height=12,
        ),
    ]
    page_one.extend(
        TextRun(text=body, x=72, y=660 - 20 * offset, height=12)
        for offset, body in enumerate(extra_body)
    )
    page_two = [
        TextRun(text="Genetics", x=72, y=700, height=24),
        TextRun(
            text="Genes carry DNA instructions. DNA replicates before division.",
            x=72,
            y=680,
            height=12,
        ),
    ]
    return [
        Page(page_number=1, text_runs=tuple(page_one)),
        Page(page_number=2, text_runs=tuple(page_two)),
    ]


def _ingest(index: InMemoryVectorIndex, provider, **kwargs):
    options = {
        "title": "Biology",
        "pages": _pages(),
        "index": index,
        "embedding_provider": provider,
        "document_id": "bio",
        "chunk_size": 60,
        "overlap_sentences": 0,
    }
    options.update(kwargs)
    return asyncio.run(ingest_document(**options))


@pytest.fixture
def engine(tmp_path: Path):
    catalog_engine = create_catalog_engine(f"sqlite+pysqlite:///{tmp_path / 'rag.db'}")
    create_schema(catalog_engine)
    yield catalog_engine
    catalog_engine.dispose()


def test_ingest_document_indexes_every_chunk(engine) -> None:
    index = InMemoryVectorIndex()

    summary = _ingest(index, FakeEmbeddingProvider(), engine=engine, source_path="bio.pdf")

    assert summary.document_id == "bio"
    assert (summary.page_count, summary.skipped_page_count) == (2, 0)
    assert summary.section_count == 2
    assert summary.chunk_count == 4
    assert summary.embedded_chunk_count == 4
    assert index.document_ids() == ["bio"]
    assert len(index) == 4

    stored = catalog.get_document(engine, "bio")
    assert stored is not None
    assert [section.title for section in stored.sections] == ["Cell Biology", "Genetics"]
    assert stored.summary.chunk_count == 4


def test_ingested_chunks_are_ranked_by_similarity() -> None:
    index = InMemoryVectorIndex()
    provider = FakeEmbeddingProvider()
    _ingest(index, provider)

    hits = asyncio.run(search_chunks("dna", index=index, embedding_provider=provider, top_k=2))

    assert [hit.chunk_id for hit in hits] == ["bio-0002", "bio-0003"]
    assert all(hit.score == pytest.approx(1.0) for hit in hits)
    assert hits[0].keywords == ("genes", "carry", "instructions")


def test_failed_and_invalid_embeddings_are_left_out_of_the_index(engine) -> None:
    index = InMemoryVectorIndex()
    pages = _pages("Poison pill sentence here.")

    summary = _ingest(
        index,
        FlakyEmbeddingProvider(),
        engine=engine,
        pages=pages,
        chunk_size=30,
    )

    assert summary.chunk_count == 5
    assert summary.embedded_chunk_count == 4
    assert catalog.get_document(engine, "bio").summary.chunk_count == 5
    assert not any(
        "Poison" in hit.content
        for hit in index.search([1.0, 1.0], k=10)
    )


def test_slow_and_wrong_dimension_embeddings_do_not_block_ingestion() -> None:
    index = InMemoryVectorIndex()
    pages = _pages("A slow sentence.", "A short vector.")

    summary = _ingest(
        index,
        FlakyEmbeddingProvider(),
        pages=pages,
        chunk_size=20,
        embed_timeout_seconds=0.05,
    )

    assert summary.chunk_count - summary.embedded_chunk_count == 2
    contents = {hit.content for hit in index.search([1.0, 1.0], k=20)}
    assert "A slow sentence." not in contents
    assert "A short vector." not in contents


def test_embedding_batches_are_bounded() -> None:
    provider = ConcurrencyTrackingProvider()
    chunks = [
        ChunkRecord(
            chunk_id=f"doc-{number:04d}",
            document_id="doc",
            section_position=0,
            position=number,
            content=f"chunk {number}",
        )
        for number in range(7)
    ]

    embedded = asyncio.run(embed_chunks(chunks, embedding_provider=provider, batch_size=2))

    assert provider.peak == 2
    assert [chunk.chunk_id for chunk in embedded] == [chunk.chunk_id for chunk in chunks]
    assert all(chunk.embedding == (1.0, 0.0) for chunk in embedded)


def test_abort_signal_stops_ingestion_before_anything_is_visible(engine) -> None:
    index = InMemoryVectorIndex()
    provider = FakeEmbeddingProvider()

    async def run() -> None:
        abort = asyncio.Event()
        abort.set()
        await ingest_document(
            title="Biology",
            pages=_pages(),
            index=index,
            embedding_provider=provider,
            engine=engine,
            abort=abort,
        )

    with pytest.raises(IngestionCancelledError):
        asyncio.run(run())

    assert len(index) == 0
    assert catalog.list_documents(engine) == []
    assert provider.calls == []


def test_provider_dimension_must_match_index() -> None:
    index = InMemoryVectorIndex()
    index.replace_document(
        "other",
        [IndexEntry(chunk_id="other-0000", document_id="other", content="x", vector=(1.0, 0.0, 0.0))],
    )

    with pytest.raises(IndexDimensionError):
        _ingest(index, FakeEmbeddingProvider())

    assert index.document_ids() == ["other"]


def test_reingesting_a_document_replaces_its_chunks(engine) -> None:
    index = InMemoryVectorIndex()
    provider = FakeEmbeddingProvider()
    _ingest(index, provider, engine=engine)

    summary = _ingest(index, provider, engine=engine, pages=_pages()[:1])

    assert summary.chunk_count == 2
    assert len(index) == 2
    assert [doc.chunk_count for doc in catalog.list_documents(engine)] == [2]


def test_document_id_is_derived_from_content_when_missing() -> None:
    index = InMemoryVectorIndex()

    summary = _ingest(index, FakeEmbeddingProvider(), document_id=None)

    assert len(summary.document_id) == 16
    assert summary.document_id == make_document_id(
        "Biology",
        "The cell membrane controls transport. Membrane proteins move ions."
        "\n\nGenes carry DNA instructions. DNA replicates before division.",
    )


def test_remove_document_clears_index_and_catalog(engine) -> None:
    index = InMemoryVectorIndex()
    _ingest(index, FakeEmbeddingProvider(), engine=engine)

    assert remove_document("bio", index=index, engine=engine) is True
    assert remove_document("bio", index=index, engine=engine) is False
    assert len(index) == 0
    assert catalog.get_document(engine, "bio") is None


def test_warm_index_restores_vectors_from_catalog(engine) -> None:
    _ingest(InMemoryVectorIndex(), FakeEmbeddingProvider(), engine=engine)

    restored = InMemoryVectorIndex()
    loaded = warm_index(engine, restored)

    assert loaded == 4
    assert restored.document_ids() == ["bio"]
    assert restored.dimension == 2


def test_search_chunks_edge_cases() -> None:
    index = InMemoryVectorIndex()
    provider = FakeEmbeddingProvider()

    with pytest.raises(ValueError, match="empty"):
        asyncio.run(search_chunks("   ", index=index, embedding_provider=provider))

    assert asyncio.run(search_chunks("cells", index=index, embedding_provider=provider)) == []
    assert provider.calls == []


def test_search_falls_back_to_zero_vector_when_query_embedding_fails() -> None:
    index = InMemoryVectorIndex()
    _ingest(index, FakeEmbeddingProvider())

    hits = asyncio.run(
        search_chunks("poison query", index=index, embedding_provider=FlakyEmbeddingProvider(), top_k=3)
    )

    assert len(hits) == 3
    assert all(hit.score == 0.0 for hit in hits)


class UnreliableEmbeddingProvider(FakeEmbeddingProvider):
    """Raises a plain connection error on the given call numbers."""

    def __init__(self, failing_calls: set[int] | None = None) -> None:
        super().__init__()
        self.failing_calls = failing_calls

    async def embed(self, text: str) -> list[float]:
        vector = await super().embed(text)
        if self.failing_calls is None or len(self.calls) in self.failing_calls:
            raise ConnectionError("socket reset")
        return vector


def test_unexpected_provider_error_skips_only_that_chunk(engine) -> None:
    index = InMemoryVectorIndex()

    summary = _ingest(index, UnreliableEmbeddingProvider({2}), engine=engine)

    assert summary.chunk_count == 4
    assert summary.embedded_chunk_count == summary.chunk_count - 1
    assert len(index) == 3
    assert catalog.get_document(engine, "bio").summary.chunk_count == 4


def test_unexpected_query_embedding_error_falls_back_to_zero_vector() -> None:
    index = InMemoryVectorIndex()
    _ingest(index, FakeEmbeddingProvider())

    hits = asyncio.run(
        search_chunks("cell", index=index, embedding_provider=UnreliableEmbeddingProvider(), top_k=4)
    )

    assert len(hits) == 4
    assert all(hit.score == 0.0 for hit in hits)


def test_page_count_covers_pages_the_loader_dropped(engine) -> None:
    index = InMemoryVectorIndex()

    summary = _ingest(index, FakeEmbeddingProvider(), engine=engine, pages=_pages()[:1], page_count=2)

    assert summary.page_count == 2
    assert summary.skipped_page_count == 1
    assert catalog.get_document(engine, "bio").summary.page_count == 2


def test_failed_catalog_delete_keeps_document_searchable(
    engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    index = InMemoryVectorIndex()
    _ingest(index, FakeEmbeddingProvider(), engine=engine)

    def locked(engine, document_id: str) -> bool:
        raise RuntimeError("database is locked")

    monkeypatch.setattr(catalog, "delete_document", locked)

    with pytest.raises(RuntimeError, match="locked"):
        remove_document("bio", index=index, engine=engine)

    assert index.document_ids() == ["bio"]
    assert catalog.get_document(engine, "bio") is not None
