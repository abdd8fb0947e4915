from __future__ import annotations

from array import array
from dataclasses import dataclass
from datetime import datetime
import hashlib

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from studydocs.models import ChunkRow, DocumentRecord, SectionRecord
from studydocs.services.rag.types import IndexEntry, IngestedDocument


@dataclass(frozen=True)
class DocumentSummary:
    document_id: str
    title: str
    source_path: str | None
    page_count: int
    chunk_count: int
    created_at: datetime | None


@dataclass(frozen=True)
class StoredSection:
    position: int
    title: str
    level: int
    page_start: int
    page_end: int
    parent_position: int | None
    content: str


@dataclass(frozen=True)
class StoredDocument:
    summary: DocumentSummary
    sections: tuple[StoredSection, ...]


def _encode_embedding(values: tuple[float, ...]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def save_document(engine: Engine, document: IngestedDocument) -> None:
    with Session(engine) as session, session.begin():
        existing = session.get(DocumentRecord, document.document_id)
        if existing is not None:
            session.delete(existing)
            session.flush()
            session.expunge_all()

        record = DocumentRecord(
            id=document.document_id,
            title=document.title,
            source_path=document.source_path,
            content=document.text,
            content_hash=_content_hash(document.text),
            page_count=document.page_count,
        )
        session.add(record)

        section_records: dict[int, SectionRecord] = {}
        for section in document.sections:
            section_record = SectionRecord(
                position=section.position,
                title=section.title,
                level=section.level,
                content=section.content,
                page_start=section.page_start,
                page_end=section.page_end if section.page_end is not None else section.page_start,
                parent=(
                    section_records.get(section.parent.position)
                    if section.parent is not None
                    else None
                ),
            )
            record.sections.append(section_record)
            section_records[section.position] = section_record

        for chunk in document.chunks:
            record.chunks.append(
                ChunkRow(
                    id=chunk.chunk_id,
                    section=section_records[chunk.section_position],
                    position=chunk.position,
                    content=chunk.content,
                    keywords=list(chunk.keywords),
                    embedding=(
                        _encode_embedding(chunk.embedding) if chunk.embedding is not None else None
                    ),
                    embedding_dim=len(chunk.embedding) if chunk.embedding is not None else None,
                )
            )


def delete_document(engine: Engine, document_id: str) -> bool:
    with Session(engine) as session, session.begin():
        existing = session.get(DocumentRecord, document_id)
        if existing is None:
            return False
        session.delete(existing)
    return True


def _summaries(session: Session, document_ids: list[str] | None = None) -> list[DocumentSummary]:
    chunk_counts = (
        select(ChunkRow.document_id, func.count(ChunkRow.id).label("chunk_count"))
        .group_by(ChunkRow.document_id)
        .subquery()
    )
    stmt = (
        select(DocumentRecord, func.coalesce(chunk_counts.c.chunk_count, 0))
        .outerjoin(chunk_counts, chunk_counts.c.document_id == DocumentRecord.id)
        .order_by(DocumentRecord.created_at.asc(), DocumentRecord.id.asc())
    )
    if document_ids is not None:
        stmt = stmt.where(DocumentRecord.id.in_(document_ids))

    return [
        DocumentSummary(
            document_id=record.id,
            title=record.title,
            source_path=record.source_path,
            page_count=record.page_count,
            chunk_count=int(chunk_count),
            created_at=record.created_at,
        )
        for record, chunk_count in session.execute(stmt).all()
    ]


def list_documents(engine: Engine) -> list[DocumentSummary]:
    with Session(engine) as session:
        return _summaries(session)


def get_document(engine: Engine, document_id: str) -> StoredDocument | None:
    with Session(engine) as session:
        summaries = _summaries(session, [document_id])
        if not summaries:
            return None

        records = session.scalars(
            select(SectionRecord)
            .where(SectionRecord.document_id == document_id)
            .order_by(SectionRecord.position.asc())
        ).all()
        positions = {record.id: record.position for record in records}
        sections = tuple(
            StoredSection(
                position=record.position,
                title=record.title,
                level=record.level,
                page_start=record.page_start,
                page_end=record.page_end,
                parent_position=positions.get(record.parent_id) if record.parent_id else None,
                content=record.content,
            )
            for record in records
        )

    return StoredDocument(summary=summaries[0], sections=sections)


def document_context(engine: Engine, document_id: str, *, max_chars: int) -> str | None:
    with Session(engine) as session:
        if session.get(DocumentRecord, document_id) is None:
            return None
        contents = session.scalars(
            select(ChunkRow.content)
            .where(ChunkRow.document_id == document_id)
            .order_by(ChunkRow.position.asc())
        ).all()

    parts: list[str] = []
    used = 0
    for content in contents:
        if used + len(content) > max_chars and parts:
            break
        parts.append(content[:max_chars])
        used += len(content) + 2
    return "\n\n".join(parts)


def load_index_entries(engine: Engine) -> dict[str, list[IndexEntry]]:
    with Session(engine) as session:
        rows = session.execute(
            select(
                ChunkRow.id,
                ChunkRow.document_id,
                ChunkRow.content,
                ChunkRow.keywords,
                ChunkRow.embedding,
                ChunkRow.embedding_dim,
            )
            .where(ChunkRow.embedding.is_not(None))
            .order_by(ChunkRow.document_id.asc(), ChunkRow.position.asc())
        ).all()

    entries: dict[str, list[IndexEntry]] = {}
    for chunk_id, document_id, content, keywords, embedding_blob, embedding_dim in rows:
        embedding = _decode_embedding(embedding_blob)
        if len(embedding) != embedding_dim:
            continue
        entries.setdefault(document_id, []).append(
            IndexEntry(
                chunk_id=chunk_id,
                document_id=document_id,
                content=content,
                vector=tuple(embedding),
                keywords=tuple(keywords or ()),
            )
        )
    return entries
