from datetime import datetime
from typing import Annotated, Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import Engine

from studydocs.config import get_settings
from studydocs.db import create_schema, get_engine
from studydocs.llm import GenerativeProvider, OllamaChatClient
from studydocs.logging_config import configure_logging
from studydocs.services.generation import answer_question, generate_flashcards, generate_quiz
from studydocs.services.rag import catalog
from studydocs.services.rag.embedder import HashEmbeddingProvider
from studydocs.services.rag.embedding_client import EmbeddingProvider, OllamaEmbeddingClient
from studydocs.services.rag.ingest import ingest_document, remove_document, warm_index
from studydocs.services.rag.query import search_chunks
from studydocs.services.rag.types import Page, QueryHit, TextRun
from studydocs.services.rag.vector_index import IndexDimensionError, InMemoryVectorIndex, VectorIndex

app = FastAPI(title="studydocs API", version="0.1.0")


class TextRunPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    x: float
    y: float
    height: float


class PagePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page_number: int = Field(ge=1)
    text_runs: list[TextRunPayload] = Field(default_factory=list)


class DocumentIngestRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    document_id: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_-]{1,64}$")
    source_path: str | None = None
    page_count: int | None = Field(default=None, ge=1)
    pages: list[PagePayload] = Field(min_length=1)


class AskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1)
    k: int = Field(default=3, ge=1, le=20)
    document_id: str | None = None


class QuizRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=5, ge=1, le=20)
    difficulty: Literal["easy", "medium", "hard"] = "medium"


class FlashcardRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    count: int = Field(default=5, ge=1, le=30)


@app.on_event("startup")
def startup() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.json_logs)

    engine = get_engine()
    create_schema(engine)
    index = InMemoryVectorIndex()
    warm_index(engine, index)
    app.state.vector_index = index


def get_vector_index(request: Request) -> VectorIndex:
    return request.app.state.vector_index


def get_catalog_engine() -> Engine:
    return get_engine()


def get_embedding_provider() -> EmbeddingProvider:
    settings = get_settings()
    if settings.rag_embedding_provider == "hash":
        return HashEmbeddingProvider(dimensions=settings.rag_embedding_dim)
    return OllamaEmbeddingClient(
        base_url=settings.ollama_base_url,
        model=settings.ollama_embed_model,
        dimensions=settings.rag_embedding_dim,
        timeout_seconds=settings.ollama_timeout_seconds,
        max_attempts=settings.ollama_max_attempts,
        retry_wait_seconds=settings.ollama_retry_wait_seconds,
    )


def get_generative_provider() -> GenerativeProvider:
    settings = get_settings()
    return OllamaChatClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
        max_attempts=settings.ollama_max_attempts,
        retry_wait_seconds=settings.ollama_retry_wait_seconds,
    )


IndexDep = Annotated[VectorIndex, Depends(get_vector_index)]
EngineDep = Annotated[Engine, Depends(get_catalog_engine)]
EmbeddingDep = Annotated[EmbeddingProvider, Depends(get_embedding_provider)]
GenerativeDep = Annotated[GenerativeProvider, Depends(get_generative_provider)]


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _hit_payload(hit: QueryHit) -> dict[str, Any]:
    return {
        "chunk_id": hit.chunk_id,
        "document_id": hit.document_id,
        "score": round(hit.score, 6),
        "content": hit.content,
        "keywords": list(hit.keywords),
    }


def _summary_payload(summary: catalog.DocumentSummary) -> dict[str, Any]:
    return {
        "document_id": summary.document_id,
        "title": summary.title,
        "source_path": summary.source_path,
        "page_count": summary.page_count,
        "chunk_count": summary.chunk_count,
        "created_at": _to_iso(summary.created_at),
    }


def _to_pages(payload: list[PagePayload]) -> list[Page]:
    return [
        Page(
            page_number=page.page_number,
            text_runs=tuple(
                TextRun(text=run.text, x=run.x, y=run.y, height=run.height)
                for run in page.text_runs
            ),
        )
        for page in sorted(payload, key=lambda item: item.page_number)
    ]


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/documents", status_code=201)
async def create_document(
    request: DocumentIngestRequest,
    index: IndexDep,
    engine: EngineDep,
    embedding_provider: EmbeddingDep,
) -> dict[str, Any]:
    settings = get_settings()

    try:
        summary = await ingest_document(
            title=request.title.strip(),
            pages=_to_pages(request.pages),
            index=index,
            embedding_provider=embedding_provider,
            engine=engine,
            document_id=request.document_id,
            source_path=request.source_path,
            page_count=request.page_count,
            chunk_size=settings.rag_chunk_size,
            overlap_sentences=settings.rag_overlap_sentences,
            heading_sample_pages=settings.rag_heading_sample_pages,
            embed_batch_size=settings.rag_embed_batch_size,
            embed_timeout_seconds=settings.ollama_timeout_seconds,
            yield_every_pages=settings.rag_yield_every_pages,
        )
    except IndexDimensionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return {
        "document_id": summary.document_id,
        "page_count": summary.page_count,
        "skipped_page_count": summary.skipped_page_count,
        "section_count": summary.section_count,
        "chunk_count": summary.chunk_count,
        "embedded_chunk_count": summary.embedded_chunk_count,
    }


@app.get("/documents")
def list_documents(engine: EngineDep) -> list[dict[str, Any]]:
    return [_summary_payload(summary) for summary in catalog.list_documents(engine)]


@app.get("/documents/{document_id}")
def get_document(document_id: str, engine: EngineDep) -> dict[str, Any]:
    document = catalog.get_document(engine, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="document not found")

    return {
        **_summary_payload(document.summary),
        "sections": [
            {
                "position": section.position,
                "title": section.title,
                "level": section.level,
                "page_start": section.page_start,
                "page_end": section.page_end,
                "parent_position": section.parent_position,
            }
            for section in document.sections
        ],
    }


@app.delete("/documents/{document_id}", status_code=204)
def delete_document(document_id: str, index: IndexDep, engine: EngineDep) -> Response:
    if not remove_document(document_id, index=index, engine=engine):
        raise HTTPException(status_code=404, detail="document not found")
    return Response(status_code=204)


@app.get("/rag/search")
async def rag_search(
    index: IndexDep,
    embedding_provider: EmbeddingDep,
    q: str,
    k: int = 3,
    document_id: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    top_k = max(1, min(k, 20))
    try:
        hits = await search_chunks(
            q,
            index=index,
            embedding_provider=embedding_provider,
            top_k=top_k,
            document_id=document_id,
            timeout_seconds=get_settings().ollama_timeout_seconds,
        )
    except IndexDimensionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return [_hit_payload(hit) for hit in hits]


@app.post("/ask")
async def ask(
    request: AskRequest,
    index: IndexDep,
    embedding_provider: EmbeddingDep,
    generative_provider: GenerativeDep,
) -> dict[str, Any]:
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question must not be empty")

    settings = get_settings()
    try:
        hits = await search_chunks(
            question,
            index=index,
            embedding_provider=embedding_provider,
            top_k=request.k,
            document_id=request.document_id,
            timeout_seconds=settings.ollama_timeout_seconds,
        )
    except IndexDimensionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    answer = await answer_question(
        question,
        hits,
        generative_provider,
        timeout_seconds=settings.ollama_timeout_seconds,
    )
    return {
        "answer": answer,
        "sources": [_hit_payload(hit) for hit in hits],
        "meta": {
            "retrieval_k": request.k,
            "retrieved_count": len(hits),
        },
    }


def _document_context_or_404(engine: Engine, document_id: str) -> str:
    context = catalog.document_context(
        engine,
        document_id,
        max_chars=get_settings().rag_context_max_chars,
    )
    if context is None:
        raise HTTPException(status_code=404, detail="document not found")
    return context


@app.post("/documents/{document_id}/quiz")
async def create_quiz(
    document_id: str,
    engine: EngineDep,
    generative_provider: GenerativeDep,
    request: QuizRequest | None = None,
) -> dict[str, Any]:
    request = request or QuizRequest()
    context = _document_context_or_404(engine, document_id)
    questions = await generate_quiz(
        context,
        generative_provider,
        count=request.count,
        difficulty=request.difficulty,
        timeout_seconds=get_settings().ollama_timeout_seconds,
    )
    return {
        "document_id": document_id,
        "requested": request.count,
        "questions": [question.model_dump() for question in questions],
    }


@app.post("/documents/{document_id}/flashcards")
async def create_flashcards(
    document_id: str,
    engine: EngineDep,
    generative_provider: GenerativeDep,
    request: FlashcardRequest | None = None,
) -> dict[str, Any]:
    request = request or FlashcardRequest()
    context = _document_context_or_404(engine, document_id)
    cards = await generate_flashcards(
        context,
        generative_provider,
        count=request.count,
        timeout_seconds=get_settings().ollama_timeout_seconds,
    )
    return {
        "document_id": document_id,
        "requested": request.count,
        "flashcards": [card.model_dump() for card in cards],
    }


def run() -> None:
    import uvicorn

    uvicorn.run("studydocs.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
