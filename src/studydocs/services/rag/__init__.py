from studydocs.services.rag.ingest import ingest_document, remove_document
from studydocs.services.rag.query import search_chunks
from studydocs.services.rag.types import IngestionSummary, QueryHit
from studydocs.services.rag.vector_index import InMemoryVectorIndex, cosine_similarity

__all__ = [
    "InMemoryVectorIndex",
    "IngestionSummary",
    "QueryHit",
    "cosine_similarity",
    "ingest_document",
    "remove_document",
    "search_chunks",
]
