"""Factory to resolve the active generation provider."""

from __future__ import annotations

from functools import lru_cache

from tunecraft.core.config import get_settings
from tunecraft.providers.base import GenerationProvider
from tunecraft.providers.mock_provider import MockGenerationProvider
from tunecraft.providers.suno_provider import SunoApiProvider


@lru_cache(maxsize=1)
def get_generation_provider() -> GenerationProvider:
    settings = get_settings()
    provider = settings.generation_provider.strip().lower()
    if provider == "suno":
        return SunoApiProvider(
            api_key=settings.provider_api_key,
            base_url=settings.provider_base_url,
            callback_url=settings.provider_callback_url,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    return MockGenerationProvider()


def reset_generation_provider_cache() -> None:
    get_generation_provider.cache_clear()
