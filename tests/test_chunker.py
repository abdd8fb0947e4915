import pytest

from studydocs.services.rag.chunker import (
    chunk_sections,
    chunk_text,
    extract_keywords,
    split_sentences,
)
from studydocs.services.rag.types import Section

SAMPLE = "Alpha one. Beta two! Gamma three? Delta four."


def test_split_sentences_keeps_terminators_and_trailing_text() -> None:
    assert split_sentences("Is it? Yes! Done.") == ["Is it? ", "Yes! ", "Done."]
    assert split_sentences("no terminator at all") == ["no terminator at all"]
    assert split_sentences("Version 3.5 shipped today.") == ["Version 3.5 shipped today."]
    assert split_sentences("") == []


def test_chunks_without_overlap_reconstruct_the_text() -> None:
    chunks = chunk_text(SAMPLE, chunk_size=25, overlap_sentences=0)

    assert chunks == ["Alpha one. Beta two!", "Gamma three? Delta four."]
    assert " ".join(chunks) == SAMPLE


def test_overlap_repeats_trailing_sentences() -> None:
    chunks = chunk_text(SAMPLE, chunk_size=25, overlap_sentences=1)

    assert chunks == [
        "Alpha one. Beta two!",
        "Beta two! Gamma three?",
        "Gamma three? Delta four.",
    ]


def test_overlap_never_carries_a_whole_chunk() -> None:
    text = "First sentence is long enough. Second sentence is long enough."

    chunks = chunk_text(text, chunk_size=35, overlap_sentences=5)

    assert chunks == ["First sentence is long enough.", "Second sentence is long enough."]


def test_oversized_sentence_becomes_its_own_chunk() -> None:
    long_sentence = "x" * 100 + "."

    chunks = chunk_text(f"Short one. {long_sentence} Tail.", chunk_size=50, overlap_sentences=0)

    assert chunks == ["Short one.", long_sentence, "Tail."]


def test_chunk_text_handles_blank_input_and_rejects_bad_sizes() -> None:
    assert chunk_text("", chunk_size=100) == []
    assert chunk_text("   ", chunk_size=100) == []

    with pytest.raises(ValueError, match="chunk_size"):
        chunk_text(SAMPLE, chunk_size=0)
    with pytest.raises(ValueError, match="overlap_sentences"):
        chunk_text(SAMPLE, chunk_size=10, overlap_sentences=-1)


def test_extract_keywords_ranks_by_frequency_then_first_occurrence() -> None:
    text = "Mitochondria produce energy. Mitochondria contain DNA. Energy flows."

    assert extract_keywords(text) == ["mitochondria", "energy", "produce", "contain", "flows"]
    assert extract_keywords(text, limit=2) == ["mitochondria", "energy"]


def test_extract_keywords_drops_stop_words_numbers_and_short_tokens() -> None:
    text = "Chapter 2024: Introduction, table, section about these results; see figure."

    assert extract_keywords(text) == ["about", "results"]


def test_chunk_sections_numbers_chunks_across_sections() -> None:
    sections = [
        Section(title="Intro", level=1, page_start=1, content=SAMPLE, position=0),
        Section(title="Empty", level=1, page_start=2, content="", position=1),
        Section(title="Cells", level=2, page_start=2, content="Cells divide by mitosis.", position=2),
    ]

    records = chunk_sections("doc1", sections, chunk_size=25, overlap_sentences=0)

    assert [record.chunk_id for record in records] == ["doc1-0000", "doc1-0001", "doc1-0002"]
    assert [record.position for record in records] == [0, 1, 2]
    assert [record.section_position for record in records] == [0, 0, 2]
    assert records[2].keywords == ("cells", "divide", "mitosis")
    assert all(record.document_id == "doc1" for record in records)
    assert all(record.embedding is None for record in records)
