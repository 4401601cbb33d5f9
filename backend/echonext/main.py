"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from echonext.api.deps import KnowledgeStoreDep
from echonext.api.v1.router import api_router
from echonext.core.config import get_settings
from echonext.knowledge.embeddings import EmbeddingClient
from echonext.knowledge.rag_predictor import RetrievalGatedPredictor
from echonext.knowledge.store import KnowledgeStore
from echonext.observability import RequestLoggingMiddleware, get_metrics_backend
from echonext.services.completion import CompletionClient
from echonext.services.llm_predictor import LLMPredictor
from echonext.services.prediction import PredictionSourceSelector

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    # Startup
    store = KnowledgeStore()
    completion_client = CompletionClient(top_p=settings.ai_top_p)
    rag_predictor = RetrievalGatedPredictor(
        store,
        EmbeddingClient(),
        completion_client,
        top_k=settings.rag_top_k,
        similarity_threshold=settings.rag_similarity_threshold,
        max_tokens=settings.rag_max_tokens,
        temperature=settings.ai_temperature,
    )
    llm_predictor = LLMPredictor(
        completion_client,
        history_size=settings.history_size,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.ai_temperature,
    )

    app.state.knowledge_store = store
    app.state.prediction_selector = PredictionSourceSelector(
        store, rag_predictor, llm_predictor, metrics=metrics_backend
    )
    logger.info(f"{settings.app_name} {settings.app_version} started")
    yield
    # Shutdown
    await store.unload()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    openapi_url=f"{settings.api_prefix}/openapi.json",
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    lifespan=lifespan,
)

metrics_backend = get_metrics_backend()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware, metrics=metrics_backend)

# Include API router
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check(store: KnowledgeStoreDep) -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "predictor": "rag" if store.is_loaded else "llm",
    }


@app.get("/metrics", include_in_schema=False)
async def metrics() -> PlainTextResponse:
    """Prometheus-style metrics endpoint."""
    return PlainTextResponse(metrics_backend.render_prometheus())
