"""Retrieval-gated next-word prediction.

Embeds the partial utterance, retrieves the closest knowledge chunks, and
only asks the language model for a continuation when the best match is
similar enough. Every failure mode is reported as a tagged attempt so the
caller can fall back without inspecting exceptions.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Sequence, Union

from echonext.core.ai_constants import (
    AI_TEMPERATURE,
    RAG_KNOWLEDGE_LABELS,
    RAG_MAX_TOKENS,
    RAG_SIMILARITY_THRESHOLD,
    RAG_SYSTEM_PROMPTS,
    RAG_TOP_K,
    RAG_USER_PROMPTS,
)
from echonext.core.exceptions import (
    CompletionServiceError,
    DimensionMismatchError,
    EmbeddingServiceError,
)
from echonext.knowledge.embeddings import EmbeddingClient
from echonext.knowledge.language import get_language_policy
from echonext.knowledge.models import RagPrediction, SearchResult
from echonext.knowledge.search import search_strict
from echonext.knowledge.store import KnowledgeStore
from echonext.services.completion import CompletionClient

logger = logging.getLogger(__name__)

FailureReason = Literal[
    "not_loaded",
    "embedding_error",
    "dimension_mismatch",
    "no_results",
    "below_threshold",
    "completion_error",
    "empty_word",
]


@dataclass(frozen=True)
class Predicted:
    prediction: RagPrediction


@dataclass(frozen=True)
class Failed:
    reason: FailureReason
    detail: str = ""


PredictionAttempt = Union[Predicted, Failed]


def build_knowledge_prompt(results: Sequence[SearchResult], language: str) -> str:
    """Render retrieved chunks as numbered knowledge entries."""
    lang = get_language_policy(language).language.value
    label = RAG_KNOWLEDGE_LABELS[lang]
    return "\n\n".join(
        label.format(index=i + 1, text=result.text) for i, result in enumerate(results)
    )


class RetrievalGatedPredictor:
    """Predicts the next word from the active knowledge base."""

    def __init__(
        self,
        store: KnowledgeStore,
        embedding_client: EmbeddingClient,
        completion_client: CompletionClient,
        top_k: int = RAG_TOP_K,
        similarity_threshold: float = RAG_SIMILARITY_THRESHOLD,
        max_tokens: int = RAG_MAX_TOKENS,
        temperature: float = AI_TEMPERATURE,
    ):
        self.store = store
        self.embedding_client = embedding_client
        self.completion_client = completion_client
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def predict(
        self,
        query_text: str,
        conversation_history: str = "",
        language: str = "ja",
    ) -> RagPrediction | None:
        """Predict the next word, or None when retrieval does not support one.

        Args:
            query_text: Partial utterance so far.
            conversation_history: Prior utterances. Not used in the prompt.
            language: "ja" or "en".

        Returns:
            RagPrediction, or None when no knowledge base is loaded, the
            best match is below the similarity threshold, or an external
            call failed.
        """
        attempt = await self._attempt(query_text, conversation_history, language)
        if isinstance(attempt, Failed):
            logger.debug(f"RAG prediction skipped: {attempt.reason} {attempt.detail}".rstrip())
            return None
        return attempt.prediction

    async def _attempt(
        self,
        query_text: str,
        conversation_history: str,
        language: str,
    ) -> PredictionAttempt:
        if not self.store.is_loaded:
            return Failed("not_loaded")

        try:
            query_embedding = await self.embedding_client.embed(query_text)
        except EmbeddingServiceError as e:
            logger.error(f"RAG query embedding failed: {e}")
            return Failed("embedding_error", str(e))

        async with self.store.reading() as knowledge_base:
            # Unloaded while the query was being embedded
            if knowledge_base is None:
                return Failed("not_loaded")

            try:
                results = search_strict(knowledge_base, query_embedding, self.top_k)
            except DimensionMismatchError as e:
                logger.error(f"RAG search rejected query: {e}")
                return Failed("dimension_mismatch", str(e))

        if not results:
            return Failed("no_results")

        top_similarity = results[0].score
        if top_similarity < self.similarity_threshold:
            logger.debug(
                f"Top similarity {top_similarity:.3f} below threshold {self.similarity_threshold}"
            )
            return Failed("below_threshold", f"{top_similarity:.3f}")

        policy = get_language_policy(language)
        lang = policy.language.value
        system_prompt = RAG_SYSTEM_PROMPTS[lang].format(
            knowledge=build_knowledge_prompt(results, lang)
        )
        user_prompt = RAG_USER_PROMPTS[lang].format(context=query_text)

        try:
            raw_response = await self.completion_client.complete(
                system_prompt,
                user_prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except CompletionServiceError as e:
            logger.error(f"RAG completion failed: {e}")
            return Failed("completion_error", str(e))

        word = policy.extract_word(raw_response)
        if not word:
            return Failed("empty_word")

        logger.info(
            f"RAG prediction: word={word!r} similarity={top_similarity:.3f} "
            f"chunks={len(results)}"
        )
        return Predicted(
            RagPrediction(
                word=word,
                confidence=top_similarity,
                top_similarity=top_similarity,
                relevant_chunks=len(results),
                raw_response=raw_response,
            )
        )
