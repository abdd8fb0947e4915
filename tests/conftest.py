from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from studydocs.config import get_settings
from studydocs.db import get_engine
from studydocs.main import app, get_embedding_provider, get_generative_provider
from studydocs.services.rag.embedder import HashEmbeddingProvider


class FakeGenerativeProvider:
    def __init__(self, response: str = "mocked answer") -> None:
        self.response = response
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.response


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_engine.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()


@pytest.fixture
def generative_provider() -> FakeGenerativeProvider:
    return FakeGenerativeProvider()


@pytest.fixture
def client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    generative_provider: FakeGenerativeProvider,
) -> Iterator[TestClient]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("STUDYDOCS_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("STUDYDOCS_DB_ECHO", "false")
    monkeypatch.setenv("RAG_CHUNK_SIZE", "120")

    app.dependency_overrides[get_embedding_provider] = lambda: HashEmbeddingProvider(dimensions=64)
    app.dependency_overrides[get_generative_provider] = lambda: generative_provider

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    get_engine().dispose()
