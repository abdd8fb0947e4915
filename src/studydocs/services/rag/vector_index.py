"""Exact cosine-similarity index over chunk vectors.

Writers build a new snapshot and swap it in under a lock; readers grab the
current snapshot reference without locking. A query therefore sees either all
of a document's chunks or none of them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import math
from threading import Lock
from typing import Protocol

from studydocs.services.rag.types import IndexEntry, QueryHit


class IndexDimensionError(ValueError):
    pass


class VectorIndex(Protocol):
    @property
    def dimension(self) -> int | None: ...

    def replace_document(self, document_id: str, entries: Iterable[IndexEntry]) -> None: ...

    def remove_document(self, document_id: str) -> bool: ...

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        document_id: str | None = None,
    ) -> list[QueryHit]: ...

    def document_ids(self) -> list[str]: ...

    def __len__(self) -> int: ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    score = dot / (norm_a * norm_b)
    if math.isnan(score):
        return 0.0
    return score


class InMemoryVectorIndex:
    def __init__(self) -> None:
        self._lock = Lock()
        self._snapshot: Mapping[str, tuple[IndexEntry, ...]] = {}
        self._dimension: int | None = None

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def replace_document(self, document_id: str, entries: Iterable[IndexEntry]) -> None:
        staged = tuple(entries)
        for entry in staged:
            if entry.document_id != document_id:
                raise ValueError(
                    f"entry {entry.chunk_id} belongs to {entry.document_id}, not {document_id}"
                )

        with self._lock:
            remaining = {key: value for key, value in self._snapshot.items() if key != document_id}
            dimension = self._dimension if remaining else None
            for entry in staged:
                if dimension is None:
                    dimension = len(entry.vector)
                elif len(entry.vector) != dimension:
                    raise IndexDimensionError(
                        f"chunk {entry.chunk_id} has dimension {len(entry.vector)}, "
                        f"index expects {dimension}"
                    )

            if staged:
                remaining[document_id] = staged
            self._dimension = dimension if remaining else None
            self._snapshot = remaining

    def remove_document(self, document_id: str) -> bool:
        with self._lock:
            if document_id not in self._snapshot:
                return False
            remaining = {key: value for key, value in self._snapshot.items() if key != document_id}
            if not remaining:
                self._dimension = None
            self._snapshot = remaining
        return True

    def search(
        self,
        query_vector: Sequence[float],
        k: int,
        document_id: str | None = None,
    ) -> list[QueryHit]:
        if k <= 0:
            return []

        snapshot = self._snapshot
        if document_id is not None:
            candidates = snapshot.get(document_id, ())
        else:
            candidates = tuple(entry for entries in snapshot.values() for entry in entries)
        if not candidates:
            return []

        dimension = len(candidates[0].vector)
        if len(query_vector) != dimension:
            raise IndexDimensionError(
                f"query vector has dimension {len(query_vector)}, index expects {dimension}"
            )

        hits = [
            QueryHit(
                chunk_id=entry.chunk_id,
                content=entry.content,
                score=cosine_similarity(query_vector, entry.vector),
                document_id=entry.document_id,
                keywords=entry.keywords,
            )
            for entry in candidates
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def document_ids(self) -> list[str]:
        return sorted(self._snapshot)

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._snapshot.values())
