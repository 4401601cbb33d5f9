"""Language-model completion client.

Exposes the single boundary the predictors depend on:
``complete(system_prompt, user_prompt, max_tokens, temperature) -> str``.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from echonext.core.ai_constants import AI_TOP_P
from echonext.core.exceptions import CompletionServiceError
from echonext.observability import MetricsBackend, get_metrics_backend

if TYPE_CHECKING:
    from echonext.services.openai_client import OpenAIClient

logger = logging.getLogger(__name__)


class CompletionClient:
    """Chat completion client for short next-word continuations."""

    def __init__(
        self,
        client: "OpenAIClient | None" = None,
        model: str | None = None,
        timeout: Optional[float] = None,
        top_p: float = AI_TOP_P,
        metrics: MetricsBackend | None = None,
    ) -> None:
        if client is None or model is None:
            from echonext.core.config import get_settings
            from echonext.services.openai_client import get_openai_client

            settings = get_settings()
            client = client or get_openai_client()
            model = model or settings.openai_model
            if timeout is None:
                timeout = settings.external_timeout_seconds

        self._client = client
        self.model = model
        self.timeout = timeout
        self.top_p = top_p
        self.metrics = metrics or get_metrics_backend()

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> str:
        """Run a chat completion and return the stripped response text.

        Raises:
            CompletionServiceError: If the call fails, times out, or returns no content.
        """
        logger.debug(f"Completion request to model: {self.model}")

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature,
                    top_p=self.top_p,
                ),
                timeout=self.timeout,
            )
            status_code = 200
        except asyncio.TimeoutError as e:
            status_code = 504
            raise CompletionServiceError(
                f"Completion request timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise CompletionServiceError(f"Completion request failed: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.observe_external_api(
                "openai", "chat.completions", status_code, duration_ms
            )
            logger.info(
                "OpenAI API chat.completions status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )

        content = response.choices[0].message.content if response.choices else None
        if content is None:
            raise CompletionServiceError("Completion returned no content")
        return content.strip()
