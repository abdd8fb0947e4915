import asyncio
from pathlib import Path
import sys

import pytest

from studydocs.db import create_catalog_engine
from studydocs.ingest import ingest_paths, main
from studydocs.services.rag import catalog
from studydocs.services.rag.embedder import HashEmbeddingProvider


def _write_notes(directory: Path) -> Path:
    source = directory / "photosynthesis.txt"
    source.write_text(
        "Photosynthesis converts light into chemical energy.\n"
        "Chlorophyll absorbs mostly blue and red light.\f"
        "The Calvin cycle fixes carbon dioxide into sugars.\n",
        encoding="utf-8",
    )
    return source


def test_ingest_paths_stores_documents(tmp_path: Path) -> None:
    source = _write_notes(tmp_path)
    database_url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"

    summaries = asyncio.run(
        ingest_paths(
            [source],
            database_url=database_url,
            chunk_size=80,
            overlap_sentences=0,
            embedding_provider=HashEmbeddingProvider(dimensions=16),
        )
    )

    assert len(summaries) == 1
    assert summaries[0].page_count == 2
    assert summaries[0].chunk_count == 3
    assert summaries[0].embedded_chunk_count == 3

    engine = create_catalog_engine(database_url)
    try:
        documents = catalog.list_documents(engine)
    finally:
        engine.dispose()
    assert [(document.title, document.source_path) for document in documents] == [
        ("photosynthesis", str(source))
    ]


def test_ingest_paths_rejects_title_for_multiple_paths(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="--title"):
        asyncio.run(
            ingest_paths(
                [tmp_path / "a.txt", tmp_path / "b.txt"],
                database_url=f"sqlite+pysqlite:///{tmp_path / 'cli.db'}",
                chunk_size=80,
                overlap_sentences=0,
                title="Shared",
            )
        )


def test_main_prints_summary(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    source = _write_notes(tmp_path)
    monkeypatch.setenv("RAG_EMBEDDING_PROVIDER", "hash")
    monkeypatch.setenv("RAG_EMBEDDING_DIM", "32")
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "studydocs-ingest",
            str(source),
            "--title",
            "Plant notes",
            "--database-url",
            f"sqlite+pysqlite:///{tmp_path / 'cli.db'}",
        ],
    )

    main()

    output = capsys.readouterr().out
    assert "[studydocs-ingest] completed" in output
    assert f"path={source}" in output
    assert "chunks=" in output


def test_main_exits_non_zero_on_failure(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("RAG_EMBEDDING_PROVIDER", "hash")
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "studydocs-ingest",
            str(tmp_path / "missing.pdf"),
            "--database-url",
            f"sqlite+pysqlite:///{tmp_path / 'cli.db'}",
        ],
    )

    with pytest.raises(SystemExit) as exc_info:
        main()

    assert exc_info.value.code == 1
    assert "[studydocs-ingest] failed" in capsys.readouterr().err
