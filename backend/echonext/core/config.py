"""Application configuration settings."""

import logging
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# backend/ directory; knowledge folders live next to the package by default
BACKEND_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "EchoNext"
    app_version: str = "0.1.0"
    debug: bool = False
    api_prefix: str = "/api"

    # OpenAI / Azure OpenAI
    openai_api_key: Optional[str] = None
    azure_openai_api_key: Optional[str] = None
    azure_openai_endpoint: Optional[str] = None
    azure_openai_api_version: str = "2024-06-01"
    openai_model: str = "gpt-4.1-mini"
    openai_embedding_model: str = "text-embedding-ada-002"

    # Prediction
    ai_temperature: float = 0.7
    ai_top_p: float = 0.9
    llm_max_tokens: int = 10
    rag_max_tokens: int = 20
    rag_top_k: int = 3
    rag_similarity_threshold: float = 0.3
    history_size: int = 10
    external_timeout_seconds: Optional[float] = 15.0

    # Knowledge bases
    knowledge_base_dir: Path = BACKEND_DIR / "rag-knowledge"
    knowledge_data_dir: Path = BACKEND_DIR / "knowledge-data"
    default_chunk_size: int = 500
    default_chunk_overlap: int = 50
    embedding_rate_limit_seconds: float = 1.1  # ~55 requests/minute

    # Observability
    metrics_backend: str = "inmemory"  # "inmemory" | "prometheus"

    @property
    def use_azure(self) -> bool:
        """Whether Azure OpenAI credentials are configured."""
        return bool(self.azure_openai_api_key and self.azure_openai_endpoint)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Warns if no language-model credentials are configured.
    """
    settings = Settings()

    if not settings.use_azure and not settings.openai_api_key:
        msg = (
            "No OpenAI credentials configured. "
            "Set AZURE_OPENAI_API_KEY/AZURE_OPENAI_ENDPOINT or OPENAI_API_KEY."
        )
        if not settings.debug:
            logger.warning(msg)
        warnings.warn(msg, UserWarning, stacklevel=2)

    return settings
