"""Provider adapters for the model call layer."""

from typing import Dict

from ..models.generation import ProviderType
from .anthropic import AnthropicProvider
from .base import ProviderAdapter, ProviderError, RateLimitError, ValidationError
from .cerebras import CerebrasProvider
from .errors import ErrorMapper
from .huggingface import HuggingFaceProvider
from .openai import OpenAIProvider

PROVIDER_CLASSES = {
    ProviderType.CEREBRAS: CerebrasProvider,
    ProviderType.OPENAI: OpenAIProvider,
    ProviderType.ANTHROPIC: AnthropicProvider,
    ProviderType.HUGGINGFACE: HuggingFaceProvider,
}


def build_default_providers() -> Dict[ProviderType, ProviderAdapter]:
    """Instantiate one adapter per supported provider from environment settings."""
    return {provider: cls() for provider, cls in PROVIDER_CLASSES.items()}


__all__ = [
    "AnthropicProvider",
    "CerebrasProvider",
    "ErrorMapper",
    "HuggingFaceProvider",
    "OpenAIProvider",
    "PROVIDER_CLASSES",
    "ProviderAdapter",
    "ProviderError",
    "RateLimitError",
    "ValidationError",
    "build_default_providers",
]
