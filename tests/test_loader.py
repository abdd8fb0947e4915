from pathlib import Path

import fitz
import pytest

from studydocs.services.rag import loader
from studydocs.services.rag.loader import StructuralExtractionError, load_document
from studydocs.services.rag.structure import extract_sections


def test_text_files_split_into_pages_on_form_feeds(tmp_path: Path) -> None:
    source = tmp_path / "notes.txt"
    source.write_text("First line.\n\nSecond line.\fThird line.\n", encoding="utf-8")

    loaded = load_document(source)
    pages = list(loaded.pages)

    assert loaded.page_count == 2
    assert [page.page_number for page in pages] == [1, 2]
    assert [run.text for run in pages[0].text_runs] == ["First line.", "Second line."]
    # earlier lines sit higher on the page
    assert pages[0].text_runs[0].y > pages[0].text_runs[1].y
    assert extract_sections(pages).sections[0].content == "First line. Second line. Third line."


def test_pdf_spans_keep_font_size_and_page_position(tmp_path: Path) -> None:
    source = tmp_path / "biology.pdf"
    document = fitz.open()
    page = document.new_page()
    page.insert_text((72, 72), "Cell Biology", fontsize=24)
    page.insert_text((72, 120), "Cells are the basic structural unit of every living organism.", fontsize=11)
    page.insert_text((72, 140), "Membranes separate the interior of the cell from its environment.", fontsize=11)
    document.new_page()
    document.save(source)
    document.close()

    loaded = load_document(source)
    pages = list(loaded.pages)

    assert [page.page_number for page in pages] == [1, 2]
    heading, first_body, second_body = pages[0].text_runs
    assert heading.text == "Cell Biology"
    assert heading.height == pytest.approx(24)
    assert first_body.height == pytest.approx(11)
    assert heading.y > first_body.y > second_body.y
    assert pages[1].text_runs == ()

    sections = extract_sections(pages).sections
    assert [section.title for section in sections] == ["Cell Biology"]
    assert sections[0].content.startswith("Cells are the basic structural unit")


def test_unreadable_pdf_raises_extraction_error(tmp_path: Path) -> None:
    source = tmp_path / "broken.pdf"
    source.write_bytes(b"this is not a pdf")

    with pytest.raises(StructuralExtractionError):
        load_document(source)


def test_load_document_rejects_missing_and_unsupported_files(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_document(tmp_path / "missing.pdf")

    unsupported = tmp_path / "slides.pptx"
    unsupported.write_bytes(b"binary")
    with pytest.raises(ValueError, match="Unsupported document type"):
        load_document(unsupported)


def test_pdf_page_count_includes_pages_that_fail_extraction(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    source = tmp_path / "three-pages.pdf"
    document = fitz.open()
    for number in range(3):
        document.new_page().insert_text((72, 72), f"Page {number + 1} body text.", fontsize=11)
    document.save(source)
    document.close()

    extract_runs = loader._page_runs

    def failing_last_page(page):
        if page.number == 2:
            raise RuntimeError("corrupt content stream")
        return extract_runs(page)

    monkeypatch.setattr(loader, "_page_runs", failing_last_page)

    loaded = load_document(source)

    assert [page.page_number for page in loaded.pages] == [1, 2]
    assert loaded.page_count == 3
