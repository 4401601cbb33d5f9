"""Tests for the retrieval-gated predictor."""

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from echonext.core.exceptions import CompletionServiceError
from echonext.knowledge.models import Language, SearchResult
from echonext.knowledge.rag_predictor import Failed, Predicted, RetrievalGatedPredictor
from echonext.knowledge.store import KnowledgeStore, save_knowledge_base
from tests.fakes import FakeCompletionClient, FakeEmbeddingClient, make_knowledge_base


async def load_into(store: KnowledgeStore, tmp_path: Path, entries, language=Language.JA) -> None:
    path = tmp_path / "kb.json"
    save_knowledge_base(make_knowledge_base(entries, language=language), path)
    await store.load(path)


@pytest.fixture
async def loaded_store(store: KnowledgeStore, tmp_path: Path) -> KnowledgeStore:
    await load_into(
        store,
        tmp_path,
        [
            ("シュレディンガー方程式は波動関数の時間発展を記述する", [1.0, 0.0]),
            ("光速は一定である", [0.6, 0.8]),
            ("無関係な文", [0.0, 1.0]),
            ("もう一つの無関係な文", [-1.0, 0.0]),
        ],
    )
    return store


class TestRetrievalGatedPredictor:
    """Tests for RetrievalGatedPredictor.predict."""

    async def test_no_knowledge_base_returns_none_without_calls(
        self,
        rag_predictor: RetrievalGatedPredictor,
        embedding_client: FakeEmbeddingClient,
        completion_client: FakeCompletionClient,
    ):
        result = await rag_predictor.predict("量子力学では", "", "ja")

        assert result is None
        assert embedding_client.calls == []
        assert completion_client.calls == []

    async def test_grounded_prediction(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
    ):
        completion = FakeCompletionClient(response="波動関数 です")
        predictor = RetrievalGatedPredictor(loaded_store, embedding_client, completion)

        result = await predictor.predict("シュレディンガー方程式は", "前の発話", "ja")

        assert result is not None
        assert result.word == "波動関数"
        assert result.source == "rag"
        assert result.confidence == pytest.approx(1.0)
        assert result.top_similarity == pytest.approx(1.0)
        assert result.relevant_chunks == 3
        assert result.raw_response == "波動関数 です"

        call = completion.calls[0]
        assert "[関連知識1] シュレディンガー方程式は波動関数の時間発展を記述する" in call["system_prompt"]
        assert "[関連知識2] 光速は一定である" in call["system_prompt"]
        assert "もう一つの無関係な文" not in call["system_prompt"]
        assert call["user_prompt"] == "文脈: シュレディンガー方程式は\n話者が次に言いそうな単語:"
        assert "前の発話" not in call["user_prompt"]
        assert call["max_tokens"] == 20
        assert call["temperature"] == 0.7

    async def test_english_prompt_and_word_extraction(self, store: KnowledgeStore, tmp_path: Path):
        await load_into(store, tmp_path, [("Gravity bends light.", [1.0, 0.0])], Language.EN)
        completion = FakeCompletionClient(response="space time.")
        predictor = RetrievalGatedPredictor(store, FakeEmbeddingClient(), completion)

        result = await predictor.predict("Gravity bends", "", "en")

        assert result is not None
        assert result.word == "space time"
        assert "[Relevant knowledge 1] Gravity bends light." in completion.calls[0]["system_prompt"]
        assert completion.calls[0]["user_prompt"].startswith("Context: Gravity bends\n")

    async def test_score_below_threshold_is_gated(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
        completion_client: FakeCompletionClient,
    ):
        predictor = RetrievalGatedPredictor(loaded_store, embedding_client, completion_client)
        results = [SearchResult(text="weak match", score=0.29)]

        with patch("echonext.knowledge.rag_predictor.search_strict", return_value=results):
            result = await predictor.predict("query", "", "ja")

        assert result is None
        assert completion_client.calls == []

    async def test_score_at_threshold_passes(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
        completion_client: FakeCompletionClient,
    ):
        predictor = RetrievalGatedPredictor(loaded_store, embedding_client, completion_client)
        results = [SearchResult(text="borderline match", score=0.30)]

        with patch("echonext.knowledge.rag_predictor.search_strict", return_value=results):
            result = await predictor.predict("query", "", "ja")

        assert len(completion_client.calls) == 1
        assert result is not None
        assert result.confidence == pytest.approx(0.30)

    async def test_no_results_is_gated(self, store: KnowledgeStore, tmp_path: Path):
        await load_into(store, tmp_path, [])
        completion = FakeCompletionClient()
        predictor = RetrievalGatedPredictor(store, FakeEmbeddingClient(), completion)

        attempt = await predictor._attempt("query", "", "ja")

        assert attempt == Failed("no_results")
        assert completion.calls == []

    async def test_embedding_failure_returns_none(
        self,
        loaded_store: KnowledgeStore,
        completion_client: FakeCompletionClient,
    ):
        embedding = FakeEmbeddingClient(fail_on={"query"})
        predictor = RetrievalGatedPredictor(loaded_store, embedding, completion_client)

        attempt = await predictor._attempt("query", "", "ja")

        assert isinstance(attempt, Failed)
        assert attempt.reason == "embedding_error"
        assert await predictor.predict("query", "", "ja") is None
        assert completion_client.calls == []

    async def test_dimension_mismatch_returns_none(
        self,
        loaded_store: KnowledgeStore,
        completion_client: FakeCompletionClient,
    ):
        embedding = FakeEmbeddingClient(default=[1.0, 0.0, 0.0])
        predictor = RetrievalGatedPredictor(loaded_store, embedding, completion_client)

        attempt = await predictor._attempt("query", "", "ja")

        assert isinstance(attempt, Failed)
        assert attempt.reason == "dimension_mismatch"
        assert completion_client.calls == []

    async def test_completion_failure_returns_none(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
    ):
        completion = FakeCompletionClient(error=CompletionServiceError("quota exceeded"))
        predictor = RetrievalGatedPredictor(loaded_store, embedding_client, completion)

        attempt = await predictor._attempt("query", "", "ja")

        assert isinstance(attempt, Failed)
        assert attempt.reason == "completion_error"
        assert await predictor.predict("query", "", "ja") is None

    async def test_empty_completion_returns_none(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
    ):
        predictor = RetrievalGatedPredictor(
            loaded_store, embedding_client, FakeCompletionClient(response="   ")
        )

        attempt = await predictor._attempt("query", "", "ja")

        assert attempt == Failed("empty_word")

    async def test_successful_attempt_is_tagged(
        self,
        loaded_store: KnowledgeStore,
        embedding_client: FakeEmbeddingClient,
        completion_client: FakeCompletionClient,
    ):
        predictor = RetrievalGatedPredictor(loaded_store, embedding_client, completion_client)

        attempt = await predictor._attempt("query", "", "ja")

        assert isinstance(attempt, Predicted)
        assert attempt.prediction.word == "予測"

    async def test_unload_during_embedding_is_not_blocked(
        self,
        loaded_store: KnowledgeStore,
        completion_client: FakeCompletionClient,
    ):
        class UnloadingEmbeddingClient(FakeEmbeddingClient):
            async def embed(self, text: str) -> list[float]:
                await asyncio.wait_for(loaded_store.unload(), timeout=1.0)
                return await super().embed(text)

        embedding = UnloadingEmbeddingClient()
        predictor = RetrievalGatedPredictor(loaded_store, embedding, completion_client)

        attempt = await predictor._attempt("シュレディンガー方程式は", "", "ja")

        assert attempt == Failed("not_loaded")
        assert embedding.calls == ["シュレディンガー方程式は"]
        assert completion_client.calls == []
