"""Pytest configuration and fixtures for backend tests."""

from pathlib import Path
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from echonext.api.deps import get_knowledge_store, get_prediction_selector
from echonext.core.config import Settings, get_settings
from echonext.knowledge.rag_predictor import RetrievalGatedPredictor
from echonext.knowledge.store import KnowledgeStore
from echonext.main import app as main_app
from echonext.observability import MetricsCollector
from echonext.services.llm_predictor import LLMPredictor
from echonext.services.prediction import PredictionSourceSelector
from tests.fakes import FakeCompletionClient, FakeEmbeddingClient


# -------------------------------------------------------------------------
# Component Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def store() -> KnowledgeStore:
    return KnowledgeStore()


@pytest.fixture
def embedding_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def rag_predictor(
    store: KnowledgeStore,
    embedding_client: FakeEmbeddingClient,
    completion_client: FakeCompletionClient,
) -> RetrievalGatedPredictor:
    return RetrievalGatedPredictor(store, embedding_client, completion_client)


@pytest.fixture
def llm_predictor(completion_client: FakeCompletionClient) -> LLMPredictor:
    return LLMPredictor(completion_client)


@pytest.fixture
def selector(
    store: KnowledgeStore,
    rag_predictor: RetrievalGatedPredictor,
    llm_predictor: LLMPredictor,
    metrics: MetricsCollector,
) -> PredictionSourceSelector:
    return PredictionSourceSelector(store, rag_predictor, llm_predictor, metrics=metrics)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing knowledge folders at a temporary directory."""
    kb_dir = tmp_path / "rag-knowledge"
    data_dir = tmp_path / "knowledge-data"
    kb_dir.mkdir()
    data_dir.mkdir()
    return Settings(
        openai_api_key="test-key",
        knowledge_base_dir=kb_dir,
        knowledge_data_dir=data_dir,
        embedding_rate_limit_seconds=0.0,
    )


# -------------------------------------------------------------------------
# Application Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def app(
    store: KnowledgeStore,
    selector: PredictionSourceSelector,
    test_settings: Settings,
) -> FastAPI:
    """FastAPI app with components and settings overridden for tests."""
    main_app.dependency_overrides[get_knowledge_store] = lambda: store
    main_app.dependency_overrides[get_prediction_selector] = lambda: selector
    main_app.dependency_overrides[get_settings] = lambda: test_settings
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
