"""Static provider configuration and default provider orders per agent tier."""

from dataclasses import dataclass
from typing import Dict, List, Optional

from ..models.generation import AgentTier, ProviderType


@dataclass(frozen=True)
class ProviderSettings:
    """Connection defaults for one provider."""
    api_key_env: str
    default_model: str
    base_url: Optional[str] = None
    timeout_env: Optional[str] = None
    confidence_bonus: float = 0.05


PROVIDER_SETTINGS: Dict[ProviderType, ProviderSettings] = {
    ProviderType.CEREBRAS: ProviderSettings(
        api_key_env="CEREBRAS_API_KEY",
        default_model="llama3.1-8b",
        base_url="https://api.cerebras.ai/v1",
        timeout_env="CEREBRAS_TIMEOUT",
    ),
    ProviderType.OPENAI: ProviderSettings(
        api_key_env="OPENAI_API_KEY",
        default_model="gpt-4o-mini",
        timeout_env="OPENAI_TIMEOUT",
    ),
    ProviderType.ANTHROPIC: ProviderSettings(
        api_key_env="ANTHROPIC_API_KEY",
        default_model="claude-3-5-haiku-20241022",
        timeout_env="ANTHROPIC_TIMEOUT",
    ),
    ProviderType.HUGGINGFACE: ProviderSettings(
        api_key_env="HUGGINGFACE_API_KEY",
        default_model="mistralai/Mistral-7B-Instruct-v0.2",
        base_url="https://api-inference.huggingface.co/models",
        timeout_env="HUGGINGFACE_TIMEOUT",
    ),
}

# Fast, cheap providers first for the wide Micro fan-out; stronger models
# first for the synthesis tiers.
DEFAULT_PROVIDER_ORDER: Dict[Optional[AgentTier], List[ProviderType]] = {
    AgentTier.MICRO: [
        ProviderType.CEREBRAS,
        ProviderType.OPENAI,
        ProviderType.ANTHROPIC,
        ProviderType.HUGGINGFACE,
    ],
    AgentTier.MESO: [
        ProviderType.OPENAI,
        ProviderType.ANTHROPIC,
        ProviderType.CEREBRAS,
        ProviderType.HUGGINGFACE,
    ],
    AgentTier.META: [
        ProviderType.ANTHROPIC,
        ProviderType.OPENAI,
        ProviderType.CEREBRAS,
        ProviderType.HUGGINGFACE,
    ],
    None: [
        ProviderType.CEREBRAS,
        ProviderType.OPENAI,
        ProviderType.ANTHROPIC,
        ProviderType.HUGGINGFACE,
    ],
}


def get_default_order(agent_type: Optional[AgentTier] = None) -> List[ProviderType]:
    """Default fallback order for an agent tier."""
    return list(DEFAULT_PROVIDER_ORDER.get(agent_type, DEFAULT_PROVIDER_ORDER[None]))
