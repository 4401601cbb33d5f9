"""Shared OpenAI / Azure OpenAI client construction."""

from typing import Optional, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from echonext.core.config import Settings, get_settings

OpenAIClient = Union[AsyncOpenAI, AsyncAzureOpenAI]


def create_openai_client(settings: Optional[Settings] = None) -> OpenAIClient:
    """Create an async client, preferring Azure when it is configured."""
    settings = settings or get_settings()
    if settings.use_azure:
        return AsyncAzureOpenAI(
            api_key=settings.azure_openai_api_key,
            azure_endpoint=settings.azure_openai_endpoint,
            api_version=settings.azure_openai_api_version,
        )
    return AsyncOpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else AsyncOpenAI()


# Singleton instance
_openai_client: Optional[OpenAIClient] = None


def get_openai_client() -> OpenAIClient:
    global _openai_client
    if _openai_client is None:
        _openai_client = create_openai_client()
    return _openai_client
