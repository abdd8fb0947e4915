from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from studydocs.llm import GenerativeProvider, LLMClientError
from studydocs.services.generation.repair import parse_items
from studydocs.services.generation.schemas import Flashcard, QuizQuestion
from studydocs.services.rag.types import QueryHit

logger = structlog.get_logger(__name__)

NO_CONTEXT_MESSAGE = "No relevant context found in the uploaded documents."
UNAVAILABLE_ANSWER = "The answer could not be generated right now. Please try again later."
DIFFICULTIES = ("easy", "medium", "hard")


async def _complete(
    provider: GenerativeProvider,
    prompt: str,
    *,
    flow: str,
    timeout_seconds: float | None,
) -> str | None:
    try:
        return await asyncio.wait_for(provider.complete(prompt), timeout=timeout_seconds)
    except (LLMClientError, asyncio.TimeoutError) as exc:
        logger.warning("generation_failed", flow=flow, error=str(exc) or type(exc).__name__)
        return None
    except Exception as exc:
        logger.warning(
            "generation_failed",
            flow=flow,
            error=str(exc) or type(exc).__name__,
            exc_info=True,
        )
        return None


def build_cited_context(hits: Sequence[QueryHit]) -> str:
    return "\n\n".join(f"[{number}] {hit.content}" for number, hit in enumerate(hits, start=1))


async def answer_question(
    question: str,
    hits: Sequence[QueryHit],
    provider: GenerativeProvider,
    *,
    timeout_seconds: float | None = None,
) -> str:
    context = build_cited_context(hits) or NO_CONTEXT_MESSAGE
    prompt = (
        "Answer the question using only the numbered sources below. "
        "Cite the sources you use as [n]. If the sources are insufficient, say so briefly.\n\n"
        f"Sources:\n{context}\n\nQuestion: {question}"
    )
    answer = await _complete(provider, prompt, flow="answer", timeout_seconds=timeout_seconds)
    return answer if answer else UNAVAILABLE_ANSWER


async def generate_quiz(
    context: str,
    provider: GenerativeProvider,
    *,
    count: int = 5,
    difficulty: str = "medium",
    timeout_seconds: float | None = None,
) -> list[QuizQuestion]:
    if count <= 0:
        return []
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"difficulty must be one of {DIFFICULTIES}")

    prompt = (
        f"Create {count} multiple-choice questions based on the text below.\n"
        f"Difficulty level: {difficulty}.\n"
        "Output format: a JSON array of objects with keys: question (string), "
        "options (array of 4 distinct strings), correctAnswer (string, must be one of the "
        "options), explanation (string, brief). Output only the JSON array.\n\n"
        f"[TEXT START]\n{context}\n[TEXT END]"
    )
    raw = await _complete(provider, prompt, flow="quiz", timeout_seconds=timeout_seconds)
    if raw is None:
        return []

    questions = parse_items(raw, QuizQuestion, key="questions")[:count]
    logger.info("quiz_generated", requested=count, produced=len(questions))
    return questions


async def generate_flashcards(
    context: str,
    provider: GenerativeProvider,
    *,
    count: int = 5,
    timeout_seconds: float | None = None,
) -> list[Flashcard]:
    if count <= 0:
        return []

    prompt = (
        f"Create {count} study flashcards based strictly on the text below.\n"
        "Output format: a JSON array of objects with 'front' (question or term) and "
        "'back' (answer or definition, under 30 words). Output only the JSON array.\n\n"
        f"[TEXT START]\n{context}\n[TEXT END]"
    )
    raw = await _complete(provider, prompt, flow="flashcards", timeout_seconds=timeout_seconds)
    if raw is None:
        return []

    cards = parse_items(raw, Flashcard, key="flashcards")[:count]
    logger.info("flashcards_generated", requested=count, produced=len(cards))
    return cards
