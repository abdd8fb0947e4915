from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from studydocs.retry import transient_retrying

logger = structlog.get_logger(__name__)


class EmbeddingClientError(RuntimeError):
    pass


class EmbeddingProvider(Protocol):
    @property
    def dimensions(self) -> int: ...

    async def embed(self, text: str) -> list[float]: ...

    def is_available(self) -> bool: ...


def zero_vector(dimensions: int) -> list[float]:
    return [0.0] * dimensions


class OllamaEmbeddingClient:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        dimensions: int,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._dimensions = dimensions
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds
        self._transport = transport

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        if not isinstance(text, str) or not text.strip():
            return zero_vector(self._dimensions)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                async for attempt in transient_retrying(
                    max_attempts=self._max_attempts,
                    wait_seconds=self._retry_wait_seconds,
                ):
                    with attempt:
                        response = await client.post(
                            f"{self._base_url}/embeddings",
                            json={"model": self._model, "input": [text]},
                        )
                        response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingClientError(str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingClientError("Invalid embeddings payload: not JSON") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data:
            raise EmbeddingClientError("Invalid embeddings payload: missing data")

        embedding = data[0].get("embedding") if isinstance(data[0], dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingClientError("Invalid embeddings payload: missing embedding vector")
        if len(embedding) != self._dimensions:
            raise EmbeddingClientError(
                f"Invalid embeddings payload: expected {self._dimensions} dimensions, "
                f"got {len(embedding)}"
            )

        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingClientError("Invalid embeddings payload: non-numeric values") from exc

    def is_available(self) -> bool:
        try:
            response = httpx.get(f"{self._base_url}/models", timeout=min(self._timeout_seconds, 5.0))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.info("embedding_backend_unavailable", base_url=self._base_url, error=str(exc))
            return False
        return True
