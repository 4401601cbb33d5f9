"""Embedding generation for knowledge base chunks and queries.

Wraps the OpenAI (or Azure OpenAI) embeddings endpoint. The client is
stateless: no retries and no caching across query texts.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Optional

from echonext.core.exceptions import EmbeddingServiceError
from echonext.observability import MetricsBackend, get_metrics_backend

if TYPE_CHECKING:
    from echonext.services.openai_client import OpenAIClient

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Text embedding client.

    Any transport, auth, or quota failure surfaces as
    EmbeddingServiceError; callers decide the retry policy.
    """

    def __init__(
        self,
        client: "OpenAIClient | None" = None,
        model: str | None = None,
        timeout: Optional[float] = None,
        metrics: MetricsBackend | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            client: Async OpenAI client. Defaults to the shared client.
            model: Embedding model or Azure deployment name.
            timeout: Per-call timeout in seconds, None for no limit.
            metrics: Metrics backend for external call observations.
        """
        if client is None or model is None:
            from echonext.core.config import get_settings
            from echonext.services.openai_client import get_openai_client

            settings = get_settings()
            client = client or get_openai_client()
            model = model or settings.openai_embedding_model
            if timeout is None:
                timeout = settings.external_timeout_seconds

        self._client = client
        self.model = model
        self.timeout = timeout
        self.metrics = metrics or get_metrics_backend()

    async def embed(self, text: str) -> list[float]:
        """Generate an embedding for a single text.

        Args:
            text: Text to embed.

        Returns:
            Embedding vector.

        Raises:
            EmbeddingServiceError: If the embedding call fails or times out.
        """
        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await asyncio.wait_for(
                self._client.embeddings.create(model=self.model, input=text),
                timeout=self.timeout,
            )
            embedding = list(response.data[0].embedding)
            status_code = 200
            return embedding
        except asyncio.TimeoutError as e:
            status_code = 504
            raise EmbeddingServiceError(
                f"Embedding request timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding request failed: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.observe_external_api("openai", "embeddings", status_code, duration_ms)
            logger.debug(
                "OpenAI API embeddings status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )
