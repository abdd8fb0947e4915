from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TextRun:
    text: str
    x: float
    y: float
    height: float


@dataclass(frozen=True)
class Page:
    page_number: int
    text_runs: tuple[TextRun, ...] = ()


@dataclass(eq=False)
class Section:
    title: str
    level: int
    page_start: int
    page_end: int | None = None
    content: str = ""
    parent: Section | None = field(default=None, repr=False)
    position: int = 0


@dataclass(frozen=True)
class ChunkRecord:
    chunk_id: str
    document_id: str
    section_position: int
    position: int
    content: str
    keywords: tuple[str, ...] = ()
    embedding: tuple[float, ...] | None = None


@dataclass(frozen=True)
class IngestedDocument:
    document_id: str
    title: str
    source_path: str | None
    text: str
    page_count: int
    sections: tuple[Section, ...]
    chunks: tuple[ChunkRecord, ...]


@dataclass(frozen=True)
class IndexEntry:
    chunk_id: str
    document_id: str
    content: str
    vector: tuple[float, ...]
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class QueryHit:
    chunk_id: str
    content: str
    score: float
    document_id: str
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class IngestionSummary:
    document_id: str
    page_count: int
    skipped_page_count: int
    section_count: int
    chunk_count: int
    embedded_chunk_count: int


@dataclass(frozen=True)
class SourceDocument:
    pages: tuple[Page, ...]
    page_count: int
