from __future__ import annotations

from typing import Protocol

import httpx
import structlog

from studydocs.retry import transient_retrying

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a study assistant. Follow the requested output format exactly "
    "and rely on the provided text whenever it is given."
)


class LLMClientError(RuntimeError):
    pass


class GenerativeProvider(Protocol):
    async def complete(self, prompt: str) -> str: ...


class OllamaChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_wait_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max_attempts
        self._retry_wait_seconds = retry_wait_seconds
        self._transport = transport

    async def complete(self, prompt: str) -> str:
        for model, used_fallback in self._model_candidates():
            try:
                return await self._chat_completion(model=model, prompt=prompt)
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or len(self._model_candidates()) == 1:
                    raise LLMClientError(str(exc)) from exc
                logger.warning("llm_model_failed", model=model, error=str(exc))
                continue

        raise LLMClientError("No model candidates configured")

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    async def _chat_completion(self, *, model: str, prompt: str) -> str:
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
                        f"{self._base_url}/chat/completions",
                        json={
                            "model": model,
                            "messages": [
                                {"role": "system", "content": SYSTEM_PROMPT},
                                {"role": "user", "content": prompt},
                            ],
                            "temperature": 0,
                        },
                    )
                    response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()
