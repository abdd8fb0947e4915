"""Best-effort recovery of JSON emitted by a generative model.

Models asked for a JSON array tend to wrap it in chatter, repeat or dangle
commas, and stop mid-structure when they hit a token limit. The repair is
purely textual and never raises; anything it cannot salvage becomes ``[]``.
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
import structlog

logger = structlog.get_logger(__name__)

EMPTY_ARRAY = "[]"

_STRUCTURAL_PREFIXES = ("[", "]", "{", "}", '"', ",")
_REPEATED_SEPARATORS = re.compile(r",(?:\s*,)+")
_SEPARATOR_BEFORE_CLOSER = re.compile(r",\s*([\]}])")
_CLOSERS = {"[": "]", "{": "}"}

ModelT = TypeVar("ModelT", bound=BaseModel)


def _drop_prose_lines(text: str) -> str:
    kept = [
        line
        for line in text.splitlines()
        if not line.strip() or line.strip().startswith(_STRUCTURAL_PREFIXES)
    ]
    return "\n".join(kept)


def _normalize_separators(text: str) -> str:
    text = _REPEATED_SEPARATORS.sub(",", text)
    return _SEPARATOR_BEFORE_CLOSER.sub(r"\1", text)


def _locate_payload(text: str) -> str | None:
    starts = [position for position in (text.find("["), text.find("{")) if position >= 0]
    if not starts:
        return None
    return text[min(starts) :]


def _balance(text: str) -> str:
    in_string = False
    escaped = False
    expected: list[str] = []

    for position, char in enumerate(text):
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in _CLOSERS:
            expected.append(_CLOSERS[char])
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected:
                return text[: position + 1]

    # truncated: close the open string, then every open bracket innermost first
    repaired = text
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'
    while expected:
        repaired += expected.pop()
    return _SEPARATOR_BEFORE_CLOSER.sub(r"\1", repaired)


def repair_structured_text(raw: str) -> str:
    """Return text that ``json.loads`` accepts, or ``"[]"``."""

    if not isinstance(raw, str):
        return EMPTY_ARRAY

    text = _normalize_separators(_drop_prose_lines(raw))
    payload = _locate_payload(text)
    if payload is None:
        return EMPTY_ARRAY

    repaired = _balance(payload)
    try:
        json.loads(repaired)
    except (ValueError, RecursionError) as exc:
        logger.info("structured_repair_failed", error=str(exc), length=len(raw))
        return EMPTY_ARRAY
    return repaired


def load_structured(raw: str) -> Any:
    return json.loads(repair_structured_text(raw))


def _unwrap_items(value: Any, key: str | None) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        if key is not None and isinstance(value.get(key), list):
            return value[key]
        for nested in value.values():
            if isinstance(nested, list):
                return nested
        return [value]
    return []


def parse_items(raw: str, model: type[ModelT], *, key: str | None = None) -> list[ModelT]:
    """Repair ``raw`` and validate each element against ``model``.

    A top-level object is unwrapped through ``key`` (or its first list value);
    elements that fail validation are dropped so callers get partial results.
    """

    items: list[ModelT] = []
    for position, item in enumerate(_unwrap_items(load_structured(raw), key)):
        try:
            items.append(model.model_validate(item))
        except ValidationError as exc:
            logger.info(
                "structured_item_rejected",
                model=model.__name__,
                position=position,
                errors=exc.error_count(),
            )
    return items
