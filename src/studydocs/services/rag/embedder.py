from __future__ import annotations

import hashlib
import math
import re

_TOKEN_PATTERN = re.compile(r"\w+")


def _bucket(token: str, *, dimensions: int) -> tuple[int, float]:
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    index = int.from_bytes(digest[:8], "big") % dimensions
    sign = 1.0 if digest[8] & 1 else -1.0
    return index, sign


def hashed_embedding(text: str, *, dimensions: int) -> list[float]:
    if dimensions <= 0:
        raise ValueError("dimensions must be > 0")

    vector = [0.0] * dimensions
    for token in _TOKEN_PATTERN.findall(text.lower()):
        index, sign = _bucket(token, dimensions=dimensions)
        vector[index] += sign

    norm = math.sqrt(sum(value * value for value in vector))
    if norm > 0:
        return [value / norm for value in vector]

    return vector


class HashEmbeddingProvider:
    """Offline provider: signed feature hashing of word tokens.

    Texts that share vocabulary land close together, which is enough for
    ranking in tests and air-gapped deployments.
    """

    def __init__(self, *, dimensions: int = 256) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        if not isinstance(text, str):
            return [0.0] * self._dimensions
        return hashed_embedding(text, dimensions=self._dimensions)

    def is_available(self) -> bool:
        return True
