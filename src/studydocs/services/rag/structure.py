"""Infer a section hierarchy from positioned text runs.

PDF text carries no heading markup, so headings are recognised by glyph height
relative to the body text size. The body size is the height that covers the
most characters in a sample of the first pages; runs at least 1.5x that size
open a major section and runs at least 1.2x open a minor one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
import math

import structlog

from studydocs.services.rag.types import Page, Section

logger = structlog.get_logger(__name__)

DEFAULT_BODY_SIZE = 12.0
H1_RATIO = 1.5
H2_RATIO = 1.2
MIN_HEADING_LENGTH = 3
DEFAULT_SECTION_TITLE = "Introduction"


@dataclass(frozen=True)
class StructureResult:
    sections: tuple[Section, ...]
    text: str
    page_count: int
    skipped_pages: int


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def detect_body_size(pages: Sequence[Page], *, sample_pages: int = 5) -> float:
    histogram: dict[int, int] = {}
    for page in pages[: max(1, sample_pages)]:
        for run in page.text_runs:
            try:
                height = float(run.height)
                length = len(run.text)
                if not run.text.strip() or height <= 0:
                    continue
            except (AttributeError, TypeError, ValueError):
                continue
            key = _round_half_up(height)
            histogram[key] = histogram.get(key, 0) + length

    if not histogram:
        return DEFAULT_BODY_SIZE

    # max() keeps the first key seen on ties
    return float(max(histogram, key=lambda size: histogram[size]))


class StructureBuilder:
    """Accumulates pages into sections; feed pages in document order."""

    def __init__(self, *, body_size: float) -> None:
        self.body_size = body_size
        self.h1_threshold = body_size * H1_RATIO
        self.h2_threshold = body_size * H2_RATIO

        self._default_section = Section(title=DEFAULT_SECTION_TITLE, level=1, page_start=1)
        self._sections: list[Section] = [self._default_section]
        self._current = self._default_section
        self._current_parts: list[str] = []
        self._last_major: Section | None = self._default_section
        self._document_parts: list[str] = []
        self._last_page: int | None = None
        self.skipped_pages = 0

    def feed(self, page: Page) -> None:
        try:
            runs = self._prepare_runs(page)
        except (AttributeError, TypeError, ValueError) as exc:
            self.skipped_pages += 1
            logger.warning(
                "page_structure_failed",
                page_number=getattr(page, "page_number", None),
                error=str(exc),
            )
            return

        page_number = page.page_number
        page_parts: list[str] = []
        for text, height in runs:
            is_heading_candidate = len(text.strip()) > MIN_HEADING_LENGTH
            if is_heading_candidate and height >= self.h1_threshold:
                self._open_section(text.strip(), level=1, page_number=page_number)
            elif is_heading_candidate and height >= self.h2_threshold:
                self._open_section(text.strip(), level=2, page_number=page_number)
            else:
                self._current_parts.append(text)
                page_parts.append(text)

        self._document_parts.append(" ".join(page_parts))
        self._last_page = page_number

    def finish(self) -> StructureResult:
        last_page = self._last_page if self._last_page is not None else 1
        self._close_current(end_page=last_page)

        sections = [
            section
            for section in self._sections
            if section is not self._default_section or section.content
        ]
        kept = set(map(id, sections))
        for position, section in enumerate(sections):
            section.position = position
            if section.parent is not None and id(section.parent) not in kept:
                section.parent = None

        return StructureResult(
            sections=tuple(sections),
            text="\n\n".join(self._document_parts).strip(),
            page_count=self._last_page or 0,
            skipped_pages=self.skipped_pages,
        )

    def _prepare_runs(self, page: Page) -> list[tuple[str, float]]:
        prepared: list[tuple[float, float, str, float]] = []
        for run in page.text_runs:
            if not isinstance(run.text, str):
                raise TypeError(f"text run on page {page.page_number} has non-string text")
            if not run.text.strip():
                continue
            prepared.append((float(run.y), float(run.x), run.text, float(run.height)))

        prepared.sort(key=lambda item: (-item[0], item[1]))
        return [(text, height) for _, _, text, height in prepared]

    def _open_section(self, title: str, *, level: int, page_number: int) -> None:
        self._close_current(end_page=page_number)

        parent = self._last_major if level == 2 else None
        section = Section(title=title, level=level, page_start=page_number, parent=parent)
        self._sections.append(section)
        self._current = section
        if level == 1:
            self._last_major = section

    def _close_current(self, *, end_page: int) -> None:
        self._current.content = " ".join(self._current_parts).strip()
        self._current.page_end = end_page
        self._current_parts = []


def extract_sections(pages: Iterable[Page], *, sample_pages: int = 5) -> StructureResult:
    page_list = list(pages)
    builder = StructureBuilder(body_size=detect_body_size(page_list, sample_pages=sample_pages))
    for page in page_list:
        builder.feed(page)
    return builder.finish()
