from __future__ import annotations

from pathlib import Path
from typing import Any

import fitz  # PyMuPDF
import structlog

from studydocs.services.rag.types import Page, SourceDocument, TextRun

logger = structlog.get_logger(__name__)

PDF_EXTENSIONS = {".pdf"}
TEXT_EXTENSIONS = {".txt", ".md"}
SUPPORTED_EXTENSIONS = PDF_EXTENSIONS | TEXT_EXTENSIONS
TEXT_RUN_HEIGHT = 12.0


class StructuralExtractionError(RuntimeError):
    pass


def _page_runs(page: Any) -> tuple[TextRun, ...]:
    page_height = float(page.rect.height)
    runs: list[TextRun] = []
    for block in page.get_text("dict")["blocks"]:
        # image blocks carry no lines
        for line in block.get("lines", ()):
            for span in line.get("spans", ()):
                text = span.get("text", "")
                if not text.strip():
                    continue
                x0, y0, _, _ = span["bbox"]
                runs.append(
                    TextRun(
                        text=text,
                        x=float(x0),
                        y=page_height - float(y0),
                        height=abs(float(span["size"])),
                    )
                )
    return tuple(runs)


def load_pdf_document(path: Path) -> SourceDocument:
    try:
        document = fitz.open(path)
    except (RuntimeError, ValueError, OSError) as exc:
        raise StructuralExtractionError(f"Cannot open PDF {path}: {exc}") from exc

    pages: list[Page] = []
    with document:
        for page_index in range(document.page_count):
            page_number = page_index + 1
            try:
                runs = _page_runs(document[page_index])
            except (RuntimeError, ValueError, KeyError, TypeError) as exc:
                error = StructuralExtractionError(
                    f"Page {page_number} of {path.name} yielded no text positions: {exc}"
                )
                logger.warning(
                    "page_extraction_failed",
                    path=str(path),
                    page_number=page_number,
                    error=str(error),
                )
                continue
            pages.append(Page(page_number=page_number, text_runs=runs))

        page_count = document.page_count

    return SourceDocument(pages=tuple(pages), page_count=page_count)


def load_text_document(path: Path) -> SourceDocument:
    text = path.read_text(encoding="utf-8")
    pages: list[Page] = []
    # form feeds separate pages in plain-text exports
    for page_index, page_text in enumerate(text.split("\f")):
        lines = [line for line in page_text.splitlines() if line.strip()]
        runs = tuple(
            TextRun(text=line, x=0.0, y=float(len(lines) - line_index), height=TEXT_RUN_HEIGHT)
            for line_index, line in enumerate(lines)
        )
        pages.append(Page(page_number=page_index + 1, text_runs=runs))
    return SourceDocument(pages=tuple(pages), page_count=len(pages))


def load_document(path: Path) -> SourceDocument:
    if not path.exists():
        raise FileNotFoundError(f"Source file not found: {path}")
    if not path.is_file():
        raise IsADirectoryError(f"Source path is not a file: {path}")

    suffix = path.suffix.lower()
    if suffix in PDF_EXTENSIONS:
        return load_pdf_document(path)
    if suffix in TEXT_EXTENSIONS:
        return load_text_document(path)

    raise ValueError(
        f"Unsupported document type {suffix!r} for {path} "
        f"(supported: {sorted(SUPPORTED_EXTENSIONS)})"
    )
