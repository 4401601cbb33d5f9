"""Plain language-model next-word predictor.

Used when no knowledge base is loaded or the retrieval gate rejects a
query. Keeps a short rolling history of the speaker's utterances.
"""

import logging
from collections import deque

from echonext.core.ai_constants import (
    AI_TEMPERATURE,
    EMPTY_HISTORY,
    HISTORY_SIZE,
    LLM_CONFIDENCE,
    LLM_MAX_TOKENS,
    LLM_SYSTEM_PROMPTS,
    LLM_USER_PROMPTS,
)
from echonext.core.exceptions import CompletionServiceError
from echonext.knowledge.language import get_language_policy
from echonext.knowledge.models import LLMPrediction
from echonext.services.completion import CompletionClient

logger = logging.getLogger(__name__)


def is_duplicate(word: str, context: str) -> bool:
    """Whether a predicted word echoes the last word of the context."""
    tokens = context.split()
    if not word or not tokens:
        return False
    last_word = tokens[-1]
    return last_word in word or word in last_word


class LLMPredictor:
    """Next-word predictor backed only by the completion model."""

    def __init__(
        self,
        completion_client: CompletionClient,
        history_size: int = HISTORY_SIZE,
        max_tokens: int = LLM_MAX_TOKENS,
        temperature: float = AI_TEMPERATURE,
    ):
        self.completion_client = completion_client
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._history: deque[str] = deque(maxlen=history_size)

    async def predict(
        self,
        context: str,
        user_history: str = "",
        language: str = "ja",
    ) -> LLMPrediction:
        """Predict the next word for a partial utterance.

        Never raises for completion failures; those come back with
        ``reasoning="error"``.
        """
        lang = get_language_policy(language).language.value
        system_prompt = LLM_SYSTEM_PROMPTS[lang]
        user_prompt = LLM_USER_PROMPTS[lang].format(
            history=user_history or EMPTY_HISTORY[lang],
            context=context,
        )

        try:
            raw_response = await self.completion_client.complete(
                system_prompt,
                user_prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except CompletionServiceError as e:
            logger.error(f"LLM prediction error: {e}")
            return LLMPrediction(word=None, confidence=0.0, reasoning="error", error=str(e))

        parts = raw_response.split()
        word = parts[0].strip() if parts else ""

        if is_duplicate(word, context):
            logger.info(f"Skipping duplicate prediction: {word!r}")
            return LLMPrediction(
                word=None,
                confidence=0.0,
                reasoning="duplicate_avoided",
                raw_response=raw_response,
            )

        logger.info(f"LLM prediction: word={word!r}")
        return LLMPrediction(
            word=word or None,
            confidence=LLM_CONFIDENCE if word else 0.0,
            reasoning="llm_prediction",
            raw_response=raw_response,
        )

    def add_to_history(self, text: str) -> None:
        self._history.append(text)

    def get_history(self) -> str:
        return "\n".join(self._history)

    def reset(self) -> None:
        """Clear the conversation history."""
        self._history.clear()
        logger.info("Conversation history reset")
