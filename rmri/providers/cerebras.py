from ..models.generation import ProviderType
from .openai import OpenAIProvider


class CerebrasProvider(OpenAIProvider):
    """Cerebras inference through its OpenAI-compatible endpoint."""

    provider_type = ProviderType.CEREBRAS
