from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
import re

from studydocs.services.rag.types import ChunkRecord, Section

# Shortest run ending in terminal punctuation that is followed by whitespace,
# plus that whitespace; the tail after the last terminator is its own unit.
_SENTENCE_PATTERN = re.compile(r".+?(?:[.!?]+(?=\s|\Z)\s*|\Z)", re.DOTALL)
_PUNCTUATION_PATTERN = re.compile(r"[^\w\s]")
_NUMERIC_PATTERN = re.compile(r"^\d+$")

STOP_WORDS = frozenset(
    {
        "the", "is", "at", "which", "on", "and", "a", "an", "in", "to", "of",
        "for", "with", "by", "that", "this", "it", "as", "are", "was", "were",
        "be", "or", "from", "not", "but", "can", "will", "has", "have", "had",
        "these", "those", "their", "there", "then", "than", "them", "they",
        "also", "been", "into", "such", "when", "where", "what", "each",
        "introduction", "chapter", "section", "figure", "table",
    }
)

MAX_KEYWORDS = 5


def split_sentences(text: str) -> list[str]:
    return _SENTENCE_PATTERN.findall(text)


def chunk_text(text: str, *, chunk_size: int, overlap_sentences: int = 3) -> list[str]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if overlap_sentences < 0:
        raise ValueError("overlap_sentences must be >= 0")

    chunks: list[str] = []
    buffer: list[str] = []
    buffer_length = 0
    fresh = 0

    for sentence in split_sentences(text):
        if buffer_length + len(sentence) > chunk_size and fresh > 0:
            chunk = "".join(buffer).strip()
            if chunk:
                chunks.append(chunk)

            carried = min(overlap_sentences, len(buffer) - 1)
            buffer = buffer[len(buffer) - carried :] if carried > 0 else []
            buffer_length = sum(len(item) for item in buffer)
            fresh = 0

        buffer.append(sentence)
        buffer_length += len(sentence)
        fresh += 1

    if fresh > 0:
        chunk = "".join(buffer).strip()
        if chunk:
            chunks.append(chunk)

    return chunks


def extract_keywords(text: str, *, limit: int = MAX_KEYWORDS) -> list[str]:
    tokens = _PUNCTUATION_PATTERN.sub("", text.lower()).split()
    frequency = Counter(
        token
        for token in tokens
        if len(token) > 3 and token not in STOP_WORDS and not _NUMERIC_PATTERN.match(token)
    )
    # most_common is a stable sort, so ties keep first-occurrence order
    return [token for token, _ in frequency.most_common(limit)]


def chunk_sections(
    document_id: str,
    sections: Sequence[Section],
    *,
    chunk_size: int,
    overlap_sentences: int,
) -> list[ChunkRecord]:
    chunk_records: list[ChunkRecord] = []

    for section in sections:
        for chunk_content in chunk_text(
            section.content,
            chunk_size=chunk_size,
            overlap_sentences=overlap_sentences,
        ):
            index = len(chunk_records)
            chunk_records.append(
                ChunkRecord(
                    chunk_id=f"{document_id}-{index:04d}",
                    document_id=document_id,
                    section_position=section.position,
                    position=index,
                    content=chunk_content,
                    keywords=tuple(extract_keywords(chunk_content)),
                )
            )

    return chunk_records
