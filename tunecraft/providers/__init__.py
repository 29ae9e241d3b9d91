"""Music generation provider integrations."""

from tunecraft.providers.base import (
    GenerationProvider,
    ProviderAsset,
    ProviderStatusReport,
    ProviderSubmission,
    normalize_model_version,
    normalize_provider_status,
)
from tunecraft.providers.factory import get_generation_provider, reset_generation_provider_cache
from tunecraft.providers.mock_provider import MockGenerationProvider
from tunecraft.providers.suno_provider import SunoApiProvider

__all__ = [
    "GenerationProvider",
    "ProviderAsset",
    "ProviderStatusReport",
    "ProviderSubmission",
    "MockGenerationProvider",
    "SunoApiProvider",
    "get_generation_provider",
    "normalize_model_version",
    "normalize_provider_status",
    "reset_generation_provider_cache",
]
