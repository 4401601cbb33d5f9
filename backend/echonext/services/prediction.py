"""Per-turn prediction source selection.

Tries the retrieval-gated predictor when a knowledge base is loaded and
falls back to the plain language-model predictor otherwise.
"""

import logging
import time

from echonext.knowledge.language import get_language_policy
from echonext.knowledge.models import PredictionOutcome, PredictionSource
from echonext.knowledge.rag_predictor import RetrievalGatedPredictor
from echonext.knowledge.store import KnowledgeStore
from echonext.observability import MetricsBackend, get_metrics_backend
from echonext.services.llm_predictor import LLMPredictor

logger = logging.getLogger(__name__)


class PredictionSourceSelector:
    """Chooses between knowledge-grounded and plain prediction for each turn."""

    def __init__(
        self,
        store: KnowledgeStore,
        rag_predictor: RetrievalGatedPredictor,
        llm_predictor: LLMPredictor,
        metrics: MetricsBackend | None = None,
    ):
        self.store = store
        self.rag_predictor = rag_predictor
        self.llm_predictor = llm_predictor
        self.metrics = metrics or get_metrics_backend()

    @property
    def active_source(self) -> PredictionSource:
        """Source tried first on the next turn."""
        return PredictionSource.RAG if self.store.is_loaded else PredictionSource.LLM

    async def predict(self, text: str, language: str = "ja") -> PredictionOutcome:
        """Predict the next word for one utterance.

        Args:
            text: Transcribed (partial) utterance.
            language: "ja" or "en".

        Returns:
            PredictionOutcome. ``source`` is "none" when neither predictor
            produced a word.
        """
        text = text.strip()
        if not text:
            return PredictionOutcome(reasoning="empty_input")
        if len(text) < get_language_policy(language).min_interim_length:
            return PredictionOutcome(reasoning="too_short")

        start_time = time.perf_counter()
        outcome = await self._select(text, language)
        duration_ms = (time.perf_counter() - start_time) * 1000

        self.metrics.observe_prediction(outcome.source.value, duration_ms)
        logger.info(
            f"Prediction source={outcome.source.value} word={outcome.word!r} "
            f"duration_ms={duration_ms:.0f}"
        )
        return outcome

    async def _select(self, text: str, language: str) -> PredictionOutcome:
        self.llm_predictor.add_to_history(text)
        history = self.llm_predictor.get_history()

        if self.store.is_loaded:
            rag_result = await self.rag_predictor.predict(text, history, language)
            if rag_result is not None and rag_result.word:
                return PredictionOutcome(
                    word=rag_result.word,
                    confidence=rag_result.confidence,
                    source=PredictionSource.RAG,
                    top_similarity=rag_result.top_similarity,
                    relevant_chunk_count=rag_result.relevant_chunks,
                    reasoning="rag_prediction",
                    raw_response=rag_result.raw_response,
                )

        llm_result = await self.llm_predictor.predict(text, history, language)
        if not llm_result.word:
            return PredictionOutcome(
                reasoning=llm_result.reasoning,
                raw_response=llm_result.raw_response,
            )

        return PredictionOutcome(
            word=llm_result.word,
            confidence=llm_result.confidence,
            source=PredictionSource.LLM,
            reasoning=llm_result.reasoning,
            raw_response=llm_result.raw_response,
        )

    def reset(self) -> None:
        """Clear the rolling conversation history."""
        self.llm_predictor.reset()
